from __future__ import annotations

import pytest

from download_organizer.core.db import Database
from download_organizer.core.keyword_cache import PageKeywordCache
from download_organizer.core.models import RuleKeywordStats, TabKeywordEntry


class Clock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _entry(url: str, ts: float, matches: int = 1) -> TabKeywordEntry:
    return TabKeywordEntry(url=url, title=url, rule_stats={"A": RuleKeywordStats(total_matches=matches)}, timestamp=ts)


@pytest.mark.asyncio
async def test_bucket_is_capped_and_keeps_newest(db: Database) -> None:
    clock = Clock()
    cache = PageKeywordCache(db, max_entries_per_tab=3, clock=clock)
    for i in range(7):
        clock.now += 1
        await cache.record(5, _entry(f"https://p/{i}", clock.now))
        assert len(await cache.own_entries(5)) <= 3
    entries = await cache.own_entries(5)
    assert [e.url for e in entries] == ["https://p/6", "https://p/5", "https://p/4"]


@pytest.mark.asyncio
async def test_stale_buckets_purged_on_next_write(db: Database) -> None:
    clock = Clock()
    cache = PageKeywordCache(db, clock=clock)
    await cache.record(1, _entry("https://old", clock.now))
    clock.now += 24 * 3600 + 1
    await cache.record(2, _entry("https://new", clock.now))
    assert await cache.own_entries(1) == []
    assert [e.url for e in await cache.own_entries(2)] == ["https://new"]


@pytest.mark.asyncio
async def test_child_inherits_opener_entries_below_cap(db: Database) -> None:
    clock = Clock()
    cache = PageKeywordCache(db, max_entries_per_tab=3, clock=clock)
    for i in range(3):
        await cache.record(1, _entry(f"https://opener/{i}", clock.now))
    cache.link_tabs(2, 1)

    inherited = await cache.entries_for_tab(2)
    assert [e.url for e in inherited] == ["https://opener/2", "https://opener/1", "https://opener/0"]

    await cache.record(2, _entry("https://child", clock.now))
    mixed = await cache.entries_for_tab(2)
    assert [e.url for e in mixed] == ["https://child", "https://opener/2", "https://opener/1"]


@pytest.mark.asyncio
async def test_remove_tab_drops_bucket_and_relationships(db: Database) -> None:
    clock = Clock()
    cache = PageKeywordCache(db, clock=clock)
    await cache.record(1, _entry("https://one", clock.now))
    cache.link_tabs(2, 1)
    snapshot = await cache.entries_for_tab(2)

    await cache.remove_tab(1)
    assert await cache.own_entries(1) == []
    assert cache.opener_of(2) is None
    # Snapshots taken before the tab closed are unaffected.
    assert [e.url for e in snapshot] == ["https://one"]


def test_relationship_table_is_bounded(db: Database) -> None:
    cache = PageKeywordCache(db, max_relationships=2)
    cache.link_tabs(10, 1)
    cache.link_tabs(11, 1)
    cache.link_tabs(12, 1)
    assert cache.opener_of(10) is None
    assert cache.opener_of(12) == 1
    cache.link_tabs(3, 3)
    assert cache.opener_of(3) is None


@pytest.mark.asyncio
async def test_clear_empties_everything(db: Database) -> None:
    cache = PageKeywordCache(db)
    await cache.record(1, _entry("https://x", 9e12))
    await cache.clear()
    assert await cache.own_entries(1) == []


class BrokenStore:
    async def kv_get(self, key: str, *, area: str = "local") -> str | None:
        raise OSError("disk gone")

    async def kv_set(self, key: str, value: str, *, area: str = "local") -> None:
        raise OSError("disk gone")

    async def kv_delete(self, key: str, *, area: str = "local") -> None:
        raise OSError("disk gone")


@pytest.mark.asyncio
async def test_storage_failures_read_as_empty() -> None:
    cache = PageKeywordCache(BrokenStore())  # type: ignore[arg-type]
    await cache.record(1, _entry("https://x", 1.0))
    assert await cache.entries_for_tab(1) == []
    await cache.remove_tab(1)
    await cache.clear()


@pytest.mark.asyncio
async def test_corrupt_blob_reads_as_empty(db: Database) -> None:
    await db.kv_set("keyword_cache_v1", "{not json")
    cache = PageKeywordCache(db)
    assert await cache.own_entries(1) == []


@pytest.mark.asyncio
async def test_malformed_entries_are_skipped_and_purged(db: Database) -> None:
    await db.kv_set(
        "keyword_cache_v1",
        '{"1": [{"url": "u", "timestamp": "yesterday"}], "2": [{"url": "v", "rule_stats": {"A": {"total_matches": "many"}}}]}',
    )
    clock = Clock()
    cache = PageKeywordCache(db, clock=clock)
    assert await cache.entries_for_tab(1) == []
    assert await cache.own_entries(2) == []

    await cache.record(3, _entry("https://fresh", clock.now))
    assert [e.url for e in await cache.own_entries(3)] == ["https://fresh"]
    # The bucket with an unreadable timestamp counts as stale and is gone.
    assert "yesterday" not in (await db.kv_get("keyword_cache_v1") or "")
