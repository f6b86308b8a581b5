from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import pytest

from download_organizer.core.browser import Prompt
from download_organizer.core.db import Database
from download_organizer.core.models import HistoryItem, Suggestion


@pytest.fixture()
def tmp_db_path(tmp_path: Path) -> Path:
    return tmp_path / "test.sqlite3"


@pytest.fixture()
def db(tmp_db_path: Path) -> Database:
    database = Database(tmp_db_path)
    database.initialize_sync()
    return database


@dataclass
class FakeSurface:
    prompts: dict[str, Prompt] = field(default_factory=dict)
    cleared: list[str] = field(default_factory=list)
    fail: bool = False

    async def create(self, prompt: Prompt) -> str:
        if self.fail:
            raise RuntimeError("notifications disabled")
        prompt_id = f"n{len(self.prompts) + 1}"
        self.prompts[prompt_id] = prompt
        return prompt_id

    async def clear(self, prompt_id: str) -> None:
        self.cleared.append(prompt_id)


@dataclass
class FakeHistory:
    items: list[HistoryItem] = field(default_factory=list)
    calls: int = 0

    async def search(self, text: str, *, max_results: int, start_time: float) -> list[HistoryItem]:
        self.calls += 1
        return list(self.items)[:max_results]


@dataclass
class SuggestRecorder:
    calls: list[Suggestion] = field(default_factory=list)

    def __call__(self, suggestion: Suggestion) -> None:
        self.calls.append(suggestion)


@pytest.fixture()
def surface() -> FakeSurface:
    return FakeSurface()


@pytest.fixture()
def suggest() -> SuggestRecorder:
    return SuggestRecorder()


@pytest.fixture()
def history() -> FakeHistory:
    return FakeHistory()
