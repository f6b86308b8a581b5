from __future__ import annotations

import json
import logging

from download_organizer.core.db import SYNC_AREA, Database
from download_organizer.core.destination import normalize_destination
from download_organizer.core.models import Rule

logger = logging.getLogger(__name__)


RULES_KEY = "rules_v1"


class RuleStore:
    """User-defined rules, kept in the synced key space of the store."""

    def __init__(self, db: Database) -> None:
        self._db = db

    async def load(self) -> list[Rule]:
        raw = await self._db.kv_get(RULES_KEY, area=SYNC_AREA)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("Stored rules are not valid JSON; ignoring them")
            return []
        if not isinstance(data, list):
            return []
        rules: list[Rule] = []
        for item in data:
            if not isinstance(item, dict):
                continue
            rule = Rule.from_dict(item)
            if rule.name:
                rules.append(rule)
        return rules

    async def load_enabled(self) -> list[Rule]:
        return [r for r in await self.load() if r.enabled]

    async def save(self, rules: list[Rule]) -> None:
        seen: set[str] = set()
        cleaned: list[Rule] = []
        for rule in rules:
            name = rule.name.strip()
            if not name:
                raise ValueError("Rule name must not be empty")
            if name in seen:
                raise ValueError(f"Duplicate rule name: {name!r}")
            seen.add(name)
            cleaned.append(
                Rule(
                    name=name,
                    keywords=rule.keywords,
                    destination_path=normalize_destination(rule.destination_path),
                    enabled=rule.enabled,
                )
            )
        await self._db.kv_set(RULES_KEY, json.dumps([r.to_dict() for r in cleaned]), area=SYNC_AREA)

    async def add(self, rule: Rule) -> None:
        rules = [r for r in await self.load() if r.name != rule.name.strip()]
        rules.append(rule)
        await self.save(rules)

    async def remove(self, name: str) -> bool:
        rules = await self.load()
        kept = [r for r in rules if r.name != name]
        if len(kept) == len(rules):
            return False
        await self.save(kept)
        return True
