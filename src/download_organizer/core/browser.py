from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from download_organizer.core.models import HistoryItem, TabInfo


class TabProvider(Protocol):
    async def query_tabs(self) -> list[TabInfo]: ...

    async def active_tab(self) -> TabInfo | None: ...


class HistoryProvider(Protocol):
    async def search(self, text: str, *, max_results: int, start_time: float) -> list[HistoryItem]: ...


@dataclass(frozen=True)
class Prompt:
    title: str
    message: str
    # Option buttons first, then the default-folder button last.
    buttons: tuple[str, ...]
    require_interaction: bool = True


@dataclass(frozen=True)
class PromptEvent:
    kind: str  # "button", "clicked" or "closed"
    button_index: int | None = None
    by_user: bool = False

    @classmethod
    def button(cls, index: int) -> PromptEvent:
        return cls(kind="button", button_index=index)

    @classmethod
    def clicked(cls) -> PromptEvent:
        return cls(kind="clicked")

    @classmethod
    def closed(cls, *, by_user: bool) -> PromptEvent:
        return cls(kind="closed", by_user=by_user)


class PromptSurface(Protocol):
    """Notification-style prompt with buttons and no timeout of its own."""

    async def create(self, prompt: Prompt) -> str: ...

    async def clear(self, prompt_id: str) -> None: ...


@dataclass
class StaticTabs:
    """A fixed set of tabs, for the command line and tests."""

    tabs: list[TabInfo] = field(default_factory=list)
    active_id: int | None = None

    async def query_tabs(self) -> list[TabInfo]:
        return list(self.tabs)

    async def active_tab(self) -> TabInfo | None:
        for tab in self.tabs:
            if tab.id == self.active_id:
                return tab
        return None
