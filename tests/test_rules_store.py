from __future__ import annotations

import json

import pytest

from download_organizer.core.db import SYNC_AREA, Database
from download_organizer.core.models import Rule, Suggestion
from download_organizer.core.rules import RULES_KEY, RuleStore


def test_keywords_are_split_trimmed_and_lowercased() -> None:
    rule = Rule.from_keyword_string(" Sims4 ", " Sims4, TS4 ,, ", "E:/x")
    assert rule.name == "Sims4"
    assert rule.keywords == ("sims4", "ts4")
    assert rule.to_dict()["keywords"] == "sims4, ts4"


def test_rule_from_dict_accepts_list_and_legacy_keys() -> None:
    rule = Rule.from_dict({"name": "Mc", "keywords": ["Minecraft", "mod"], "downloadPath": "D:/Mc/"})
    assert rule.keywords == ("minecraft", "mod")
    assert rule.destination_path == "D:/Mc/"
    assert rule.enabled


def test_suggestion_wire_shape() -> None:
    assert Suggestion.default().to_dict() == {}
    assert Suggestion(filename="a/b.zip").to_dict() == {"filename": "a/b.zip", "conflictAction": "uniquify"}


@pytest.mark.asyncio
async def test_add_list_remove(db: Database) -> None:
    store = RuleStore(db)
    assert await store.load() == []

    await store.add(Rule.from_keyword_string("Sims4", "sims4", "E:/Sims"))
    await store.add(Rule.from_keyword_string("Old", "x", "E:/Old/", enabled=False))
    rules = await store.load()
    assert [r.name for r in rules] == ["Sims4", "Old"]
    assert rules[0].destination_path == "E:/Sims/"
    assert [r.name for r in await store.load_enabled()] == ["Sims4"]

    # Adding under an existing name replaces it.
    await store.add(Rule.from_keyword_string("Sims4", "ts4", "E:/Sims4/"))
    rules = await store.load()
    assert [(r.name, r.keywords) for r in rules] == [("Old", ("x",)), ("Sims4", ("ts4",))]

    assert await store.remove("Old")
    assert not await store.remove("Old")
    assert [r.name for r in await store.load()] == ["Sims4"]


@pytest.mark.asyncio
async def test_save_rejects_bad_names(db: Database) -> None:
    store = RuleStore(db)
    with pytest.raises(ValueError):
        await store.save([Rule.from_keyword_string("", "a", "x")])
    with pytest.raises(ValueError):
        await store.save([Rule.from_keyword_string("A", "a", "x"), Rule.from_keyword_string("A", "b", "y")])


@pytest.mark.asyncio
async def test_corrupt_or_foreign_data_loads_as_empty(db: Database) -> None:
    store = RuleStore(db)
    await db.kv_set(RULES_KEY, "not json", area=SYNC_AREA)
    assert await store.load() == []

    await db.kv_set(RULES_KEY, json.dumps([{"name": ""}, "junk", {"name": "Ok", "keywords": "a"}]), area=SYNC_AREA)
    assert [r.name for r in await store.load()] == ["Ok"]


@pytest.mark.asyncio
async def test_rules_live_in_sync_area(db: Database) -> None:
    await RuleStore(db).add(Rule.from_keyword_string("A", "a", "x/"))
    assert await db.kv_get(RULES_KEY, area=SYNC_AREA) is not None
    assert await db.kv_get(RULES_KEY) is None
