from __future__ import annotations

import argparse
import asyncio
import itertools
import logging
import sys
from pathlib import Path
from typing import Awaitable, Callable

from download_organizer.core.browser import Prompt, PromptEvent, StaticTabs
from download_organizer.core.config import AppConfig
from download_organizer.core.db import Database
from download_organizer.core.engine import DecisionEngine
from download_organizer.core.keyword_cache import PageKeywordCache
from download_organizer.core.logging_config import configure_logging
from download_organizer.core.models import DownloadItem, Rule, Suggestion, TabInfo
from download_organizer.core.oracle import OracleClient
from download_organizer.core.rules import RuleStore
from download_organizer.core.tracker import PendingDecisionTracker

logger = logging.getLogger(__name__)

CLI_TAB_ID = 1


class ConsolePromptSurface:
    """Prints the prompt; an optional scripted pick stands in for a button click."""

    def __init__(self, *, pick: int | None = None) -> None:
        self._pick = pick
        self._ids = itertools.count(1)
        self._tasks: set[asyncio.Task[bool]] = set()
        self.on_event: Callable[[str, PromptEvent], Awaitable[bool]] | None = None

    async def create(self, prompt: Prompt) -> str:
        prompt_id = f"prompt-{next(self._ids)}"
        print(prompt.title)
        print(prompt.message)
        for i, label in enumerate(prompt.buttons):
            print(f"  [{i}] {label}")
        if self._pick is not None and self.on_event is not None:
            event = PromptEvent.button(self._pick)
            asyncio.get_running_loop().call_soon(self._dispatch, prompt_id, event)
        return prompt_id

    def _dispatch(self, prompt_id: str, event: PromptEvent) -> None:
        assert self.on_event is not None
        task = asyncio.ensure_future(self.on_event(prompt_id, event))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def clear(self, prompt_id: str) -> None:
        return None


def _build_engine(config: AppConfig, db: Database, *, tabs: StaticTabs | None = None, surface=None, timeout: float | None = None) -> DecisionEngine:
    r = config.routing
    cache = PageKeywordCache(
        db,
        max_entries_per_tab=r.cache_entries_per_tab,
        max_age_seconds=r.cache_max_age_hours * 3600,
        max_relationships=r.max_tab_relationships,
    )
    tracker = PendingDecisionTracker(
        timeout_seconds=r.prompt_timeout_seconds if timeout is None else timeout,
        max_options=r.prompt_options,
    )
    oracle = OracleClient(config.oracle) if config.oracle.is_configured else None
    return DecisionEngine(
        settings=r,
        rules=RuleStore(db),
        cache=cache,
        tracker=tracker,
        tabs=tabs,
        surface=surface,
        oracle=oracle,
    )


def _download_from_args(args: argparse.Namespace) -> DownloadItem:
    return DownloadItem(
        id=1,
        filename=args.filename,
        url=args.url or "",
        referrer=args.referrer or "",
        initiator=args.tab_url or "",
    )


def _tabs_from_args(args: argparse.Namespace) -> StaticTabs | None:
    if not args.tab_url:
        return None
    tab = TabInfo(id=CLI_TAB_ID, url=args.tab_url, title=args.tab_title or "")
    return StaticTabs(tabs=[tab], active_id=CLI_TAB_ID)


async def _seed_page(engine: DecisionEngine, args: argparse.Namespace) -> None:
    if not args.page:
        return
    html = Path(args.page).read_text(encoding="utf-8", errors="ignore")
    await engine.on_page_loaded(CLI_TAB_ID, args.tab_url or "", html)


async def _cmd_rules(config: AppConfig, db: Database, args: argparse.Namespace) -> int:
    store = RuleStore(db)
    if args.rules_cmd == "add":
        await store.add(Rule.from_keyword_string(args.name, args.keywords, args.path, enabled=not args.disabled))
        print(f"Saved rule {args.name!r}")
        return 0
    if args.rules_cmd == "remove":
        if not await store.remove(args.name):
            print(f"No rule named {args.name!r}", file=sys.stderr)
            return 1
        print(f"Removed rule {args.name!r}")
        return 0
    rules = await store.load()
    if not rules:
        print("No rules configured.")
    for rule in rules:
        state = "" if rule.enabled else " (disabled)"
        print(f"{rule.name}{state}: {', '.join(rule.keywords) or '-'} -> {rule.destination_path}")
    return 0


async def _cmd_analyze(config: AppConfig, db: Database, args: argparse.Namespace) -> int:
    engine = _build_engine(config, db, tabs=_tabs_from_args(args))
    await _seed_page(engine, args)
    rules = await RuleStore(db).load_enabled()
    if not rules:
        print("No rules configured.")
        return 0
    analysis = await engine.analyze(_download_from_args(args), rules)
    print(f"{'rule':<24} {'file':>6} {'url':>6} {'title':>6} {'content':>8} {'overall':>8}")
    for r in analysis.results:
        print(
            f"{r.name:<24} {r.filename_score:>6.0f} {r.url_score:>6.0f} {r.title_score:>6.0f} "
            f"{r.content_score:>8.0f} {r.overall_score:>8.0f}"
        )
    if analysis.short_circuited:
        print("(strong filename match; other signals skipped)")
    decision = engine.threshold_decision(analysis.results, source="filename" if analysis.short_circuited else "threshold")
    print(f"decision: {decision.action}" + (f" -> {decision.match.name}" if decision.match else ""))
    return 0


async def _cmd_route(config: AppConfig, db: Database, args: argparse.Namespace) -> int:
    surface = ConsolePromptSurface(pick=args.pick)
    engine = _build_engine(config, db, tabs=_tabs_from_args(args), surface=surface, timeout=args.timeout)
    surface.on_event = engine.on_prompt_event
    await _seed_page(engine, args)

    done = asyncio.Event()
    answer: list[Suggestion] = []

    def suggest(s: Suggestion) -> None:
        answer.append(s)
        done.set()

    await engine.handle_download(_download_from_args(args), suggest)
    await done.wait()
    await engine.shutdown()
    result = answer[0]
    print(result.filename if not result.is_default else "(default location)")
    return 0


async def _cmd_cache(config: AppConfig, db: Database, args: argparse.Namespace) -> int:
    await _build_engine(config, db).on_startup()
    print("Keyword cache cleared.")
    return 0


def _add_download_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("filename")
    p.add_argument("--url", default="")
    p.add_argument("--referrer", default="")
    p.add_argument("--tab-url", default="", help="URL of the tab the download started from")
    p.add_argument("--tab-title", default="")
    p.add_argument("--page", default="", help="HTML file to use as that tab's page content")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="download-organizer", description="Route downloads into rule-based folders.")
    parser.add_argument("--home", type=Path, default=None, help="Application data directory")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    rules = sub.add_parser("rules", help="Manage routing rules")
    rules_sub = rules.add_subparsers(dest="rules_cmd", required=True)
    rules_sub.add_parser("list")
    add = rules_sub.add_parser("add")
    add.add_argument("name")
    add.add_argument("keywords", help="Comma separated keywords")
    add.add_argument("path", help="Destination folder")
    add.add_argument("--disabled", action="store_true")
    remove = rules_sub.add_parser("remove")
    remove.add_argument("name")

    analyze = sub.add_parser("analyze", help="Show the scores for a download")
    _add_download_args(analyze)

    route = sub.add_parser("route", help="Run the full decision for a download")
    _add_download_args(route)
    route.add_argument("--pick", type=int, default=None, help="Button index to press when prompted")
    route.add_argument("--timeout", type=float, default=None, help="Prompt timeout in seconds")

    cache = sub.add_parser("cache", help="Keyword cache maintenance")
    cache.add_argument("cache_cmd", choices=["clear"])
    return parser


_COMMANDS = {
    "rules": _cmd_rules,
    "analyze": _cmd_analyze,
    "route": _cmd_route,
    "cache": _cmd_cache,
}


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = AppConfig.load(args.home)
    configure_logging(config, verbose=args.verbose)

    db = Database(config.paths.db_path)
    db.initialize_sync()

    try:
        return asyncio.run(_COMMANDS[args.command](config, db, args))
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
