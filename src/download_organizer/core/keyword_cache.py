from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from typing import Any, Callable

from download_organizer.core.db import LOCAL_AREA, Database
from download_organizer.core.errors import CacheAccessError
from download_organizer.core.models import TabKeywordEntry

logger = logging.getLogger(__name__)


KEYWORD_CACHE_KEY = "keyword_cache_v1"


class PageKeywordCache:
    """Per-tab keyword statistics reported by visited pages.

    The whole cache is a single JSON blob in the local key space, updated by
    read-modify-write. Two tabs reporting at the same time can overwrite each
    other's update; the last write wins.

    Entries are kept newest first, at most `max_entries_per_tab` per tab. A tab
    bucket whose newest entry is older than `max_age_seconds` is dropped on the
    next write. Readers get deserialized copies, so closing a tab never affects
    an analysis that already holds its entries.
    """

    def __init__(
        self,
        db: Database,
        *,
        max_entries_per_tab: int = 3,
        max_age_seconds: float = 24 * 3600,
        max_relationships: int = 500,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._max_entries = max(1, int(max_entries_per_tab))
        self._max_age = float(max_age_seconds)
        self._max_relationships = max(1, int(max_relationships))
        self._clock = clock
        # child tab id -> opener tab id, oldest first
        self._openers: OrderedDict[int, int] = OrderedDict()

    async def _read(self) -> dict[str, list[dict[str, Any]]]:
        try:
            raw = await self._db.kv_get(KEYWORD_CACHE_KEY, area=LOCAL_AREA)
        except Exception as e:
            raise CacheAccessError(f"keyword cache read failed: {e}") from e
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise CacheAccessError(f"keyword cache is corrupt: {e}") from e
        if not isinstance(data, dict):
            return {}
        return {str(k): v for k, v in data.items() if isinstance(v, list)}

    async def _write(self, data: dict[str, list[dict[str, Any]]]) -> None:
        try:
            await self._db.kv_set(KEYWORD_CACHE_KEY, json.dumps(data), area=LOCAL_AREA)
        except Exception as e:
            raise CacheAccessError(f"keyword cache write failed: {e}") from e

    async def _read_or_empty(self) -> dict[str, list[dict[str, Any]]]:
        try:
            return await self._read()
        except CacheAccessError as e:
            logger.warning("%s; treating the cache as empty", e)
            return {}

    def _prune_stale(self, data: dict[str, list[dict[str, Any]]]) -> None:
        cutoff = self._clock() - self._max_age
        for tab_key in list(data.keys()):
            bucket = data[tab_key]
            newest = max((_timestamp(e) for e in bucket), default=0.0)
            if not bucket or newest < cutoff:
                del data[tab_key]

    async def record(self, tab_id: int, entry: TabKeywordEntry) -> None:
        data = await self._read_or_empty()
        bucket = data.get(str(tab_id), [])
        bucket.insert(0, entry.to_dict())
        data[str(tab_id)] = bucket[: self._max_entries]
        self._prune_stale(data)
        try:
            await self._write(data)
        except CacheAccessError as e:
            logger.warning("%s; keyword analysis for tab %s dropped", e, tab_id)

    async def own_entries(self, tab_id: int) -> list[TabKeywordEntry]:
        data = await self._read_or_empty()
        out: list[TabKeywordEntry] = []
        for raw in data.get(str(tab_id), []):
            if not isinstance(raw, dict):
                continue
            try:
                out.append(TabKeywordEntry.from_dict(raw))
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning("Skipping unreadable keyword cache entry for tab %s: %s", tab_id, e)
        return out

    async def entries_for_tab(self, tab_id: int) -> list[TabKeywordEntry]:
        """The tab's entries, topped up from its opener while below the per-tab cap."""

        entries = await self.own_entries(tab_id)
        opener = self._openers.get(tab_id)
        if opener is not None and opener != tab_id and len(entries) < self._max_entries:
            inherited = await self.own_entries(opener)
            entries.extend(inherited[: self._max_entries - len(entries)])
        return entries

    def link_tabs(self, child_id: int, opener_id: int) -> None:
        if child_id == opener_id:
            return
        self._openers.pop(child_id, None)
        self._openers[child_id] = opener_id
        while len(self._openers) > self._max_relationships:
            self._openers.popitem(last=False)

    def opener_of(self, tab_id: int) -> int | None:
        return self._openers.get(tab_id)

    async def remove_tab(self, tab_id: int) -> None:
        self._openers.pop(tab_id, None)
        for child in [c for c, o in self._openers.items() if o == tab_id]:
            del self._openers[child]

        data = await self._read_or_empty()
        if str(tab_id) not in data:
            return
        del data[str(tab_id)]
        try:
            await self._write(data)
        except CacheAccessError as e:
            logger.warning("%s; stale entries for tab %s remain until they age out", e, tab_id)

    async def clear(self) -> None:
        self._openers.clear()
        try:
            await self._db.kv_delete(KEYWORD_CACHE_KEY, area=LOCAL_AREA)
        except Exception as e:
            logger.warning("keyword cache clear failed: %s", e)


def _timestamp(raw: Any) -> float:
    # Unreadable timestamps count as ancient, so the bucket is purged.
    if not isinstance(raw, dict):
        return 0.0
    try:
        return float(raw.get("timestamp") or 0.0)
    except (TypeError, ValueError):
        return 0.0
