from __future__ import annotations

import logging
import re
import time
from typing import Sequence

from bs4 import BeautifulSoup

from download_organizer.core.models import Rule, RuleKeywordStats, TabKeywordEntry

logger = logging.getLogger(__name__)


def count_keyword(text: str, keyword: str) -> int:
    if not keyword:
        return 0
    return len(re.findall(re.escape(keyword), text, flags=re.IGNORECASE))


def analyze_text(text: str, rules: Sequence[Rule], *, url: str = "", title: str = "", timestamp: float | None = None) -> TabKeywordEntry:
    """Count every keyword occurrence per rule in already-extracted page text."""

    lowered = (text or "").lower()
    stats: dict[str, RuleKeywordStats] = {}
    for rule in rules:
        counts = {kw: count_keyword(lowered, kw) for kw in rule.keywords}
        stats[rule.name] = RuleKeywordStats(total_matches=sum(counts.values()), keyword_counts=counts)
    return TabKeywordEntry(
        url=url,
        title=title,
        rule_stats=stats,
        timestamp=time.time() if timestamp is None else timestamp,
    )


def analyze_page(html: str, url: str, rules: Sequence[Rule], *, timestamp: float | None = None) -> TabKeywordEntry:
    """Keyword statistics for a rendered page, as the page-side script reports them."""

    soup = BeautifulSoup(html or "", "lxml")
    title = (soup.title.text.strip() if soup.title and soup.title.text else "")
    for tag in soup(["script", "style", "noscript", "template"]):
        tag.decompose()
    body = soup.body or soup
    text = body.get_text(" ", strip=True)
    entry = analyze_text(text, rules, url=url, title=title, timestamp=timestamp)
    logger.debug(
        "page stats for %s: %s",
        url,
        {name: s.total_matches for name, s in entry.rule_stats.items()},
    )
    return entry
