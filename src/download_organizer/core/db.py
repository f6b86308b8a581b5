from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)


# Two key spaces mirror the browser's storage areas: "sync" holds the rules,
# "local" holds per-session data such as the keyword cache.
SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS kv (
  area TEXT NOT NULL,
  key TEXT NOT NULL,
  value TEXT NOT NULL,
  PRIMARY KEY(area, key)
);
"""

SYNC_AREA = "sync"
LOCAL_AREA = "local"


@dataclass(frozen=True)
class Database:
    path: Path

    def initialize_sync(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        try:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    async def _connect(self) -> aiosqlite.Connection:
        """Create and initialize an aiosqlite connection.

        Important: callers should NOT use `async with conn` on the returned connection,
        because the connection is already awaited/started. Use try/finally + close.
        """

        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    async def kv_get(self, key: str, *, area: str = LOCAL_AREA) -> str | None:
        conn = await self._connect()
        try:
            async with conn.execute("SELECT value FROM kv WHERE area=? AND key=?", (area, key)) as cur:
                row = await cur.fetchone()
                return (str(row[0]) if row else None)
        finally:
            await conn.close()

    async def kv_set(self, key: str, value: str, *, area: str = LOCAL_AREA) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                "INSERT INTO kv(area,key,value) VALUES(?,?,?) ON CONFLICT(area,key) DO UPDATE SET value=excluded.value",
                (area, key, value),
            )
            await conn.commit()
        finally:
            await conn.close()

    async def kv_delete(self, key: str, *, area: str = LOCAL_AREA) -> None:
        conn = await self._connect()
        try:
            await conn.execute("DELETE FROM kv WHERE area=? AND key=?", (area, key))
            await conn.commit()
        finally:
            await conn.close()
