from __future__ import annotations

import logging
from typing import Sequence

from download_organizer.core.matching import KeywordMatcher
from download_organizer.core.models import MatchResult, Rule, TabKeywordEntry

logger = logging.getLogger(__name__)


def score_filename(filename: str, rules: Sequence[Rule]) -> list[MatchResult]:
    """Share of each rule's keywords present in the filename, as a percentage.

    Emits one result per rule, zero-valued when the rule has no keywords.
    """

    results: list[MatchResult] = []
    for rule in rules:
        matcher = KeywordMatcher(keywords=rule.keywords)
        if len(matcher):
            score = min(100.0, matcher.count_matches(filename) / len(matcher) * 100.0)
        else:
            score = 0.0
        results.append(
            MatchResult(
                name=rule.name,
                destination_path=rule.destination_path,
                filename_score=score,
                overall_score=score,
            )
        )
    return results


def score_urls_and_titles(urls: Sequence[str], titles: Sequence[str], rules: Sequence[Rule]) -> list[MatchResult]:
    """URL score counts matching URLs; title score counts every keyword hit.

    A URL contributes at most once per rule. Titles are not capped per title, so
    a title hitting several keywords weighs more than one hitting a single one.
    """

    checked_urls = [u.lower() for u in urls if u]
    checked_titles = [t.lower() for t in titles if t]
    results: list[MatchResult] = []

    for rule in rules:
        matcher = KeywordMatcher(keywords=rule.keywords)
        keywords = matcher.keywords
        url_hits = sum(1 for url in checked_urls if matcher.any_match(url))
        title_hits = sum(matcher.count_matches(title) for title in checked_titles)

        url_score = min(100.0, url_hits / len(checked_urls) * 100.0) if checked_urls else 0.0
        if checked_titles and keywords:
            title_score = min(100.0, title_hits / (len(checked_titles) * len(keywords)) * 100.0)
        else:
            title_score = 0.0

        logger.debug(
            "url/title scores for %s: url=%.1f (%d/%d) title=%.1f (%d hits over %d titles)",
            rule.name,
            url_score,
            url_hits,
            len(checked_urls),
            title_score,
            title_hits,
            len(checked_titles),
        )
        results.append(
            MatchResult(
                name=rule.name,
                destination_path=rule.destination_path,
                url_score=url_score,
                title_score=title_score,
                overall_score=max(url_score, title_score),
            )
        )
    return results


def score_page_keywords(
    entries: Sequence[TabKeywordEntry],
    rules: Sequence[Rule],
    *,
    penalty_base: float = 1.5,
) -> list[MatchResult]:
    """Each rule's share of all cached keyword hits, penalized per silent page.

    For every entry in which the rule found nothing, the score is divided by
    `penalty_base`. The result is deliberately left uncapped.
    """

    totals: dict[str, int] = {}
    silent: dict[str, int] = {}
    for rule in rules:
        total = 0
        zero_entries = 0
        for entry in entries:
            stats = entry.rule_stats.get(rule.name)
            matches = stats.total_matches if stats is not None else 0
            if matches <= 0:
                zero_entries += 1
            total += max(0, matches)
        totals[rule.name] = total
        silent[rule.name] = zero_entries

    grand_total = sum(totals.values())
    results: list[MatchResult] = []
    for rule in rules:
        raw = totals[rule.name] / grand_total * 100.0 if grand_total > 0 else 0.0
        score = raw / (penalty_base ** silent[rule.name]) if raw else 0.0
        results.append(
            MatchResult(
                name=rule.name,
                destination_path=rule.destination_path,
                content_score=score,
                overall_score=score,
            )
        )
    return results
