from __future__ import annotations

from typing import Sequence

from download_organizer.core.models import MatchResult, Rule


def check_complete(results: Sequence[MatchResult], rules: Sequence[Rule]) -> None:
    """Every scorer must emit exactly one entry per rule, zero-valued or not."""

    names = [r.name for r in results]
    expected = [r.name for r in rules]
    if sorted(names) != sorted(expected):
        missing = sorted(set(expected) - set(names))
        extra = sorted(set(names) - set(expected))
        raise ValueError(f"Scorer output does not cover the rule set (missing={missing}, extra={extra})")


def combine_results(base: Sequence[MatchResult], other: Sequence[MatchResult]) -> list[MatchResult]:
    """Merge two score sets by rule name, keeping the per-signal maxima.

    `base` must contain every rule named in `other`. The overall score is
    recomputed from the merged components, never taken from the inputs.
    """

    index = {r.name: i for i, r in enumerate(base)}
    combined = list(base)
    for o in other:
        i = index.get(o.name)
        if i is None:
            raise ValueError(f"Rule {o.name!r} is missing from the base result set")
        cur = combined[i]
        combined[i] = MatchResult(
            name=cur.name,
            destination_path=cur.destination_path,
            filename_score=max(cur.filename_score, o.filename_score),
            url_score=max(cur.url_score, o.url_score),
            title_score=max(cur.title_score, o.title_score),
            content_score=max(cur.content_score, o.content_score),
        ).with_overall()
    return combined


def rank_results(results: Sequence[MatchResult]) -> list[MatchResult]:
    # sorted() is stable: ties keep rule order.
    return sorted(results, key=lambda r: r.overall_score, reverse=True)
