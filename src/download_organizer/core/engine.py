from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Sequence

from download_organizer.core.browser import HistoryProvider, PromptEvent, PromptSurface, TabProvider
from download_organizer.core.combine import check_complete, combine_results, rank_results
from download_organizer.core.config import RoutingSettings
from download_organizer.core.destination import suggested_filename
from download_organizer.core.errors import ConfigMissingError, OracleError, TabResolutionError
from download_organizer.core.keyword_cache import PageKeywordCache
from download_organizer.core.models import (
    Analysis,
    Decision,
    DownloadItem,
    HistoryItem,
    MatchResult,
    PromptOption,
    Rule,
    Suggestion,
    TabInfo,
    TabKeywordEntry,
)
from download_organizer.core.oracle import OracleClient
from download_organizer.core.page_stats import analyze_page
from download_organizer.core.rules import RuleStore
from download_organizer.core.scoring import score_filename, score_page_keywords, score_urls_and_titles
from download_organizer.core.tracker import PendingDecisionTracker
from download_organizer.core.utils import is_internal_url, strip_query, take_truthy

logger = logging.getLogger(__name__)


def _fmt(r: MatchResult) -> str:
    return (
        f"{r.name} (filename {round(r.filename_score)}%, url {round(r.url_score)}%, "
        f"title {round(r.title_score)}%, content {round(r.content_score)}%, overall {round(r.overall_score)}%)"
    )


class DecisionEngine:
    """Picks a destination folder for each download.

    Pipeline per download: filename scoring (which may short-circuit), context
    gathering (originating tab, cached page statistics, history), URL/title and
    page-keyword scoring, then either the oracle or the per-signal threshold
    policy. Every failure degrades to a less informed step; the worst outcome
    is the browser's default location.
    """

    def __init__(
        self,
        *,
        settings: RoutingSettings,
        rules: RuleStore,
        cache: PageKeywordCache,
        tracker: PendingDecisionTracker | None = None,
        tabs: TabProvider | None = None,
        history: HistoryProvider | None = None,
        surface: PromptSurface | None = None,
        oracle: OracleClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._rules = rules
        self._cache = cache
        self._tracker = tracker or PendingDecisionTracker(
            timeout_seconds=settings.prompt_timeout_seconds,
            max_options=settings.prompt_options,
        )
        self._tabs = tabs
        self._history = history
        self._surface = surface
        self._oracle = oracle
        self._clock = clock
        self._tasks: set[asyncio.Task[Decision]] = set()

    @property
    def tracker(self) -> PendingDecisionTracker:
        return self._tracker

    # -- download lifecycle -------------------------------------------------

    def on_determining_filename(self, item: DownloadItem, suggest: Callable[[Suggestion], None]) -> bool:
        """Take ownership of a download; the answer arrives later through `suggest`."""

        logger.info("Download started: %s %s", item.filename, item.url)
        self._tracker.register(item, suggest)
        task = asyncio.create_task(self.process_download(item))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def handle_download(self, item: DownloadItem, suggest: Callable[[Suggestion], None]) -> Decision:
        logger.info("Download started: %s %s", item.filename, item.url)
        self._tracker.register(item, suggest)
        return await self.process_download(item)

    async def process_download(self, item: DownloadItem) -> Decision:
        try:
            decision = await self.decide(item)
        except Exception:
            logger.exception("Error processing download %s", item.id)
            self._tracker.resolve_default(item.id)
            return Decision(action="default", source="error")

        try:
            await self._apply(item, decision)
        except Exception:
            logger.exception("Error applying decision for download %s", item.id)
            self._tracker.resolve_default(item.id)
        return decision

    async def decide(self, item: DownloadItem) -> Decision:
        try:
            rules = await self._require_rules()
        except ConfigMissingError as e:
            logger.info("%s; using the default location", e)
            return Decision(action="default", source="config")

        analysis = await self.analyze(item, rules)
        if analysis.short_circuited:
            return self.threshold_decision(analysis.results, source="filename")

        if self._oracle is not None and self._oracle.configured:
            decision = await self._ask_oracle(item, analysis, rules)
            if decision is not None:
                return decision
        return self.threshold_decision(analysis.results)

    async def _apply(self, item: DownloadItem, decision: Decision) -> None:
        if decision.action == "auto" and decision.match is not None:
            logger.info("Using best match automatically: %s", _fmt(decision.match))
            filename = suggested_filename(item.filename, decision.match.destination_path)
            self._tracker.resolve(item.id, Suggestion(filename=filename, conflict_action="uniquify"))
        elif decision.action == "prompt" and decision.options:
            if self._surface is None:
                logger.info("No prompt surface available; using the default location")
                self._tracker.resolve_default(item.id)
                return
            await self._tracker.prompt(item.id, decision.options, self._surface)
        else:
            self._tracker.resolve_default(item.id)

    def threshold_decision(self, results: Sequence[MatchResult], *, source: str = "threshold") -> Decision:
        s = self._settings
        if not results or all(r.overall_score == 0 for r in results):
            logger.info("No matches found (0%%), using default location")
            return Decision(action="default", source=source)

        top = results[0]
        if (
            top.filename_score >= s.filename_threshold
            or top.url_score >= s.url_threshold
            or top.title_score >= s.title_threshold
            or top.content_score >= s.content_threshold
        ):
            return Decision(action="auto", source=source, match=top)

        options = tuple(
            PromptOption(name=r.name, destination_path=r.destination_path, confidence=r.overall_score)
            for r in results[: s.prompt_options]
        )
        return Decision(action="prompt", source=source, options=options)

    # -- analysis -----------------------------------------------------------

    async def analyze(self, item: DownloadItem, rules: Sequence[Rule]) -> Analysis:
        s = self._settings
        filename_results = score_filename(item.filename, rules)
        check_complete(filename_results, rules)

        strong = [r for r in filename_results if r.filename_score >= s.short_circuit_threshold]
        if strong:
            logger.info(
                "High filename match detected for %s (%d%%), skipping further analysis.",
                strong[0].name,
                round(strong[0].filename_score),
            )
            return Analysis(results=rank_results(filename_results), short_circuited=True)

        tab = await self._resolve_tab(item)
        entries = await self._cached_entries(tab)
        history: list[HistoryItem] = []
        if tab is None and not entries:
            history = await self._recent_history()

        urls: list[str | None] = [item.url, item.referrer]
        titles: list[str | None] = []
        if tab is not None and (tab.url or tab.title):
            urls.append(tab.url)
            titles.append(tab.title)
        elif entries:
            urls.extend(e.url for e in entries)
            titles.extend(e.title for e in entries)
        else:
            urls.extend(h.url for h in history)
            titles.extend(h.title for h in history)
        checked_urls = take_truthy(urls, s.max_evidence_items)
        checked_titles = take_truthy(titles, s.max_evidence_items)

        url_results = self._score_or_zero(
            "url/title", lambda: score_urls_and_titles(checked_urls, checked_titles, rules), rules
        )
        content_results = self._score_or_zero(
            "content", lambda: score_page_keywords(entries, rules, penalty_base=s.content_penalty_base), rules
        )

        combined = combine_results(filename_results, url_results)
        combined = combine_results(combined, content_results)
        ranked = rank_results(combined)
        for r in ranked:
            logger.debug("score %s", _fmt(r))
        return Analysis(results=ranked, urls=checked_urls, titles=checked_titles)

    @staticmethod
    def _score_or_zero(signal: str, fn: Callable[[], list[MatchResult]], rules: Sequence[Rule]) -> list[MatchResult]:
        try:
            results = fn()
            check_complete(results, rules)
            return results
        except Exception:
            logger.exception("%s scoring failed; treating the signal as empty", signal)
            return [MatchResult(name=r.name, destination_path=r.destination_path) for r in rules]

    async def _load_rules(self) -> list[Rule]:
        try:
            return await self._rules.load_enabled()
        except Exception as e:
            logger.warning("Could not load rules: %s", e)
            return []

    async def _require_rules(self) -> list[Rule]:
        rules = await self._load_rules()
        if not rules:
            raise ConfigMissingError("No rules configured")
        return rules

    async def _resolve_tab(self, item: DownloadItem) -> TabInfo | None:
        if self._tabs is None:
            return None
        if item.initiator:
            try:
                return await self._find_initiator_tab(item.initiator)
            except TabResolutionError as e:
                logger.info("%s; falling back to the active tab", e)
            except Exception as e:
                logger.warning("Error getting tab info: %s", e)
        try:
            tab = await self._tabs.active_tab()
        except Exception as e:
            logger.warning("Could not query the active tab: %s", e)
            return None
        if tab is None or is_internal_url(tab.url):
            return None
        return tab

    async def _find_initiator_tab(self, initiator: str) -> TabInfo:
        prefix = strip_query(initiator)
        if not prefix:
            raise TabResolutionError("Download has no usable initiator")
        candidates = [t for t in await self._tabs.query_tabs() if t.url and t.url.startswith(prefix)]
        if not candidates:
            raise TabResolutionError(f"No matching tab found for {prefix}")
        # Closest match: the least extra path beyond the initiator.
        return min(candidates, key=lambda t: len(t.url))

    async def _cached_entries(self, tab: TabInfo | None) -> list[TabKeywordEntry]:
        if tab is None:
            return []
        try:
            return await self._cache.entries_for_tab(tab.id)
        except Exception as e:
            logger.warning("Keyword cache unavailable for tab %s: %s", tab.id, e)
            return []

    async def _recent_history(self) -> list[HistoryItem]:
        if self._history is None:
            return []
        s = self._settings
        start = self._clock() - s.history_window_days * 24 * 3600
        try:
            items = await self._history.search("", max_results=s.history_items * 3, start_time=start)
        except Exception as e:
            logger.warning("History lookup failed: %s", e)
            return []
        return [h for h in items if h.url and not is_internal_url(h.url)][: s.history_items]

    async def _ask_oracle(self, item: DownloadItem, analysis: Analysis, rules: Sequence[Rule]) -> Decision | None:
        assert self._oracle is not None
        try:
            verdict = await self._oracle.decide(item.filename, analysis.urls, analysis.titles, rules)
        except OracleError as e:
            logger.warning("Oracle unavailable (%s); using score thresholds", e)
            return None
        except Exception:
            logger.exception("Oracle call failed; using score thresholds")
            return None
        if verdict is None:
            return None

        by_name = {r.name: r for r in analysis.results}
        if verdict.kind == "none":
            logger.info("Oracle found no matching rule")
            return Decision(action="default", source="oracle")
        if verdict.kind == "single":
            match = by_name.get(verdict.names[0])
            if match is None:
                return None
            logger.info("Oracle chose %s", match.name)
            return Decision(action="auto", source="oracle", match=match)

        options: list[PromptOption] = []
        for name in verdict.names:
            r = by_name.get(name)
            if r is None:
                return None
            options.append(
                PromptOption(name=r.name, destination_path=r.destination_path, confidence=self._settings.oracle_display_confidence)
            )
        logger.info("Oracle undecided between %s", " and ".join(verdict.names))
        return Decision(action="prompt", source="oracle", options=tuple(options))

    # -- collaborator events ------------------------------------------------

    async def on_startup(self) -> None:
        # The keyword cache never outlives the process.
        await self._cache.clear()

    async def on_keyword_analysis(self, tab_id: int, entry: TabKeywordEntry) -> None:
        await self._cache.record(tab_id, entry)

    async def on_page_loaded(self, tab_id: int, url: str, html: str) -> TabKeywordEntry | None:
        rules = await self._load_rules()
        if not rules:
            logger.debug("No rules configured; skipping page analysis for tab %s", tab_id)
            return None
        entry = analyze_page(html, url, rules, timestamp=self._clock())
        await self._cache.record(tab_id, entry)
        return entry

    def on_tab_created(self, tab_id: int, opener_id: int | None) -> None:
        if opener_id is not None:
            self._cache.link_tabs(tab_id, opener_id)

    async def on_tab_removed(self, tab_id: int) -> None:
        await self._cache.remove_tab(tab_id)

    async def on_prompt_event(self, prompt_id: str, event: PromptEvent) -> bool:
        return await self._tracker.handle_event(prompt_id, event)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self._tracker.shutdown()
