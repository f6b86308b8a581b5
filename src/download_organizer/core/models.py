from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable


def parse_keywords(raw: str) -> tuple[str, ...]:
    return tuple(k.strip().lower() for k in (raw or "").split(",") if k.strip())


@dataclass(frozen=True)
class Rule:
    name: str
    keywords: tuple[str, ...]
    destination_path: str
    enabled: bool = True

    @classmethod
    def from_keyword_string(cls, name: str, keywords: str, destination_path: str, enabled: bool = True) -> Rule:
        return cls(name=name.strip(), keywords=parse_keywords(keywords), destination_path=destination_path, enabled=enabled)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Rule:
        raw = data.get("keywords", "")
        if isinstance(raw, (list, tuple)):
            raw = ",".join(str(k) for k in raw)
        return cls.from_keyword_string(
            str(data.get("name") or ""),
            str(raw or ""),
            str(data.get("destination_path") or data.get("downloadPath") or ""),
            enabled=bool(data.get("enabled", True)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "keywords": ", ".join(self.keywords),
            "destination_path": self.destination_path,
            "enabled": self.enabled,
        }


@dataclass(frozen=True)
class MatchResult:
    name: str
    destination_path: str
    filename_score: float = 0.0
    url_score: float = 0.0
    title_score: float = 0.0
    content_score: float = 0.0
    overall_score: float = 0.0

    def with_overall(self) -> MatchResult:
        overall = max(self.filename_score, self.url_score, self.title_score, self.content_score)
        return MatchResult(
            name=self.name,
            destination_path=self.destination_path,
            filename_score=self.filename_score,
            url_score=self.url_score,
            title_score=self.title_score,
            content_score=self.content_score,
            overall_score=overall,
        )


@dataclass(frozen=True)
class RuleKeywordStats:
    total_matches: int
    keyword_counts: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class TabKeywordEntry:
    url: str
    title: str
    rule_stats: dict[str, RuleKeywordStats]
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "timestamp": self.timestamp,
            "rule_stats": {
                name: {"total_matches": s.total_matches, "keyword_counts": dict(s.keyword_counts)}
                for name, s in self.rule_stats.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TabKeywordEntry:
        stats: dict[str, RuleKeywordStats] = {}
        for name, raw in (data.get("rule_stats") or {}).items():
            if not isinstance(raw, dict):
                continue
            counts = {str(k): int(v) for k, v in (raw.get("keyword_counts") or {}).items()}
            stats[str(name)] = RuleKeywordStats(total_matches=int(raw.get("total_matches") or 0), keyword_counts=counts)
        return cls(
            url=str(data.get("url") or ""),
            title=str(data.get("title") or ""),
            rule_stats=stats,
            timestamp=float(data.get("timestamp") or 0.0),
        )


@dataclass(frozen=True)
class DownloadItem:
    id: int
    filename: str
    url: str = ""
    referrer: str = ""
    initiator: str = ""


@dataclass(frozen=True)
class TabInfo:
    id: int
    url: str
    title: str = ""


@dataclass(frozen=True)
class HistoryItem:
    id: str
    url: str
    title: str = ""


@dataclass(frozen=True)
class Suggestion:
    filename: str | None = None
    conflict_action: str | None = None

    @classmethod
    def default(cls) -> Suggestion:
        return cls()

    @property
    def is_default(self) -> bool:
        return not self.filename

    def to_dict(self) -> dict[str, str]:
        if not self.filename:
            return {}
        return {"filename": self.filename, "conflictAction": self.conflict_action or "uniquify"}


@dataclass
class PendingDownload:
    download_id: int
    item: DownloadItem
    resolve: Callable[[Suggestion], None]


@dataclass(frozen=True)
class PromptOption:
    name: str
    destination_path: str
    # Display only; never fed back into scoring.
    confidence: float


@dataclass(frozen=True)
class Decision:
    action: str  # "auto", "prompt" or "default"
    source: str  # "filename", "threshold", "oracle", "config" or "error"
    match: MatchResult | None = None
    options: tuple[PromptOption, ...] = ()


@dataclass(frozen=True)
class Analysis:
    results: list[MatchResult]
    urls: list[str] = field(default_factory=list)
    titles: list[str] = field(default_factory=list)
    short_circuited: bool = False
