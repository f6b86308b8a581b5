from __future__ import annotations

import re
from typing import Iterable

_WS_RE = re.compile(r"\s+")


def keyword_variants(keyword: str) -> list[str]:
    """Separator-substituted forms of a keyword.

    Filenames and URLs rarely keep the spaces of a phrase: "sims 4" shows up as
    "sims-4", "sims_4", "sims+4" or "sims%204", and the reverse holds for
    keywords written with separators.
    """

    return [
        _WS_RE.sub("-", keyword),
        _WS_RE.sub("_", keyword),
        _WS_RE.sub("+", keyword),
        _WS_RE.sub("%20", keyword),
        keyword.replace("-", " "),
        keyword.replace("_", " "),
        keyword.replace("+", " "),
    ]


def is_keyword_in_text(text: str, keyword: str) -> bool:
    """`text` is expected lowercased and `keyword` lowercased/trimmed."""

    if not keyword:
        return False
    if keyword in text:
        return True
    for variant in keyword_variants(keyword):
        if variant and variant in text:
            return True
    return False


class KeywordMatcher:
    def __init__(self, *, keywords: Iterable[str]) -> None:
        self._keywords = [k.strip().lower() for k in keywords if k and k.strip()]

    @property
    def keywords(self) -> list[str]:
        return list(self._keywords)

    def __len__(self) -> int:
        return len(self._keywords)

    def matches(self, text: str) -> list[str]:
        """Keywords present in `text`, each reported once."""

        normalized = (text or "").lower()
        if not normalized:
            return []
        return [kw for kw in self._keywords if is_keyword_in_text(normalized, kw)]

    def count_matches(self, text: str) -> int:
        return len(self.matches(text))

    def any_match(self, text: str) -> bool:
        normalized = (text or "").lower()
        return any(is_keyword_in_text(normalized, kw) for kw in self._keywords)
