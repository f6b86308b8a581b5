from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from download_organizer.core.browser import Prompt, PromptEvent, PromptSurface
from download_organizer.core.destination import suggested_filename
from download_organizer.core.errors import PromptSurfaceError
from download_organizer.core.models import DownloadItem, PendingDownload, PromptOption, Suggestion
from download_organizer.core.utils import base_filename

logger = logging.getLogger(__name__)


PROMPT_TITLE = "Choose Download Location"
DEFAULT_BUTTON = "Use Default Folder"


@dataclass
class _OpenPrompt:
    prompt_id: str
    download_id: int
    options: tuple[PromptOption, ...]
    surface: PromptSurface


def build_prompt(item: DownloadItem, options: Sequence[PromptOption]) -> Prompt:
    buttons = [f"{o.name} ({round(o.confidence)}%)" for o in options]
    buttons.append(DEFAULT_BUTTON)
    return Prompt(
        title=PROMPT_TITLE,
        message=f'Where would you like to save "{base_filename(item.filename)}"?',
        buttons=tuple(buttons),
    )


class PendingDecisionTracker:
    """Downloads waiting for a destination, each answered exactly once.

    Every in-flight download is registered with the callback that answers the
    browser. `resolve` pops the entry before calling back, so any later path
    (a late button click, the prompt timeout, an automatic dismissal) finds
    nothing and becomes a no-op.
    """

    def __init__(self, *, timeout_seconds: float = 15.0, max_options: int = 2) -> None:
        self._timeout = float(timeout_seconds)
        self._max_options = max(0, int(max_options))
        self._pending: dict[int, PendingDownload] = {}
        self._prompts: dict[str, _OpenPrompt] = {}
        self._prompt_by_download: dict[int, str] = {}
        self._timers: dict[int, asyncio.Task[None]] = {}

    def register(self, item: DownloadItem, resolve: Callable[[Suggestion], None]) -> PendingDownload:
        if item.id in self._pending:
            raise ValueError(f"Download {item.id} is already pending")
        pending = PendingDownload(download_id=item.id, item=item, resolve=resolve)
        self._pending[item.id] = pending
        return pending

    def is_pending(self, download_id: int) -> bool:
        return download_id in self._pending

    def pending_count(self) -> int:
        return len(self._pending)

    def open_prompt_count(self) -> int:
        return len(self._prompts)

    def resolve(self, download_id: int, suggestion: Suggestion) -> bool:
        pending = self._pending.pop(download_id, None)
        timer = self._timers.pop(download_id, None)
        if timer is not None and timer is not _current_task():
            timer.cancel()
        prompt_id = self._prompt_by_download.pop(download_id, None)
        if prompt_id is not None:
            self._prompts.pop(prompt_id, None)

        if pending is None:
            logger.debug("Download %s already resolved; ignoring %s", download_id, suggestion.to_dict())
            return False

        if suggestion.is_default:
            logger.info("Download %s: using the default location", download_id)
        else:
            logger.info("Download %s: saving as %s", download_id, suggestion.filename)
        try:
            pending.resolve(suggestion)
        except Exception:
            logger.exception("Suggest callback for download %s failed", download_id)
        return True

    def resolve_default(self, download_id: int) -> bool:
        return self.resolve(download_id, Suggestion.default())

    def resolve_option(self, download_id: int, option: PromptOption) -> bool:
        pending = self._pending.get(download_id)
        if pending is None:
            return False
        filename = suggested_filename(pending.item.filename, option.destination_path)
        return self.resolve(download_id, Suggestion(filename=filename, conflict_action="uniquify"))

    async def prompt(self, download_id: int, options: Sequence[PromptOption], surface: PromptSurface) -> str | None:
        """Ask the user to pick among `options`; times out to the default.

        Returns the prompt id, or None when the prompt could not be shown (the
        download is then resolved with the default right away).
        """

        pending = self._pending.get(download_id)
        if pending is None:
            return None
        shown = tuple(options[: self._max_options])
        # Armed before create(): a surface that never answers still times out.
        self._timers[download_id] = asyncio.create_task(self._expire(download_id, surface))
        try:
            prompt_id = await _show(surface, build_prompt(pending.item, shown), timeout=self._timeout)
        except PromptSurfaceError as e:
            logger.warning("Could not show a prompt for download %s: %s", download_id, e)
            self.resolve_default(download_id)
            return None

        if download_id not in self._pending:
            # Resolved (or timed out) while the prompt was being created.
            await _clear_quietly(surface, prompt_id)
            return None

        self._prompts[prompt_id] = _OpenPrompt(prompt_id=prompt_id, download_id=download_id, options=shown, surface=surface)
        self._prompt_by_download[download_id] = prompt_id
        return prompt_id

    async def _expire(self, download_id: int, surface: PromptSurface) -> None:
        try:
            await asyncio.sleep(self._timeout)
        except asyncio.CancelledError:
            return
        if download_id not in self._pending:
            return
        prompt_id = self._prompt_by_download.get(download_id)
        logger.info("Prompt for download %s timed out after %.0fs", download_id, self._timeout)
        self.resolve_default(download_id)
        if prompt_id is not None:
            await _clear_quietly(surface, prompt_id)

    async def handle_event(self, prompt_id: str, event: PromptEvent) -> bool:
        """Apply a user or surface event to an open prompt. First one wins."""

        prompt = self._prompts.get(prompt_id)
        if prompt is None:
            return False

        if event.kind == "button" and event.button_index is not None and 0 <= event.button_index < len(prompt.options):
            option = prompt.options[event.button_index]
            logger.info("Download %s: user chose %s", prompt.download_id, option.name)
            resolved = self.resolve_option(prompt.download_id, option)
        else:
            # Default button, body click and any dismissal all mean "default folder".
            logger.info("Download %s: prompt %s (%s) -> default", prompt.download_id, event.kind, "user" if event.by_user else "auto")
            resolved = self.resolve_default(prompt.download_id)

        if event.kind != "closed":
            await _clear_quietly(prompt.surface, prompt_id)
        return resolved

    async def shutdown(self) -> None:
        """Answer every outstanding download with the default location."""

        for download_id in list(self._pending.keys()):
            prompt_id = self._prompt_by_download.get(download_id)
            prompt = self._prompts.get(prompt_id) if prompt_id else None
            self.resolve_default(download_id)
            if prompt is not None:
                await _clear_quietly(prompt.surface, prompt.prompt_id)


def _current_task() -> asyncio.Task | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


async def _show(surface: PromptSurface, prompt: Prompt, *, timeout: float) -> str:
    try:
        return await asyncio.wait_for(surface.create(prompt), timeout)
    except asyncio.TimeoutError as e:
        raise PromptSurfaceError(f"no prompt id after {timeout:.0f}s") from e
    except Exception as e:
        raise PromptSurfaceError(str(e) or type(e).__name__) from e


async def _clear_quietly(surface: PromptSurface, prompt_id: str) -> None:
    try:
        await surface.clear(prompt_id)
    except Exception as e:
        logger.debug("Prompt %s already closed: %s", prompt_id, e)
