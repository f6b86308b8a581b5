from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Any, Sequence

import aiohttp
from aiolimiter import AsyncLimiter
from yarl import URL

from download_organizer.core.config import OracleSettings
from download_organizer.core.errors import OracleCallError, OracleConfigMissingError
from download_organizer.core.models import Rule
from download_organizer.core.utils import base_filename

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """\
You sort downloaded files into folders. Each folder has a name and keywords.
Answer with exactly one of:
{FolderName}            when one folder clearly fits
{FolderA || FolderB}    when two folders fit about equally
{NULL}                  when no folder fits
Use folder names exactly as given. Do not add any other text."""

_BRACED_RE = re.compile(r"\{([^{}]*)\}")
PAIR_SEPARATOR = "||"
NULL_SENTINEL = "NULL"


@dataclass(frozen=True)
class OracleVerdict:
    kind: str  # "single", "pair" or "none"
    names: tuple[str, ...] = ()


def build_user_prompt(filename: str, urls: Sequence[str], titles: Sequence[str], rules: Sequence[Rule]) -> str:
    lines = [f"File name: {base_filename(filename)}"]
    lines.append("Related URLs:")
    lines.extend(f"- {u}" for u in urls if u)
    if not any(urls):
        lines.append("- (none)")
    lines.append("Related page titles:")
    lines.extend(f"- {t}" for t in titles if t)
    if not any(titles):
        lines.append("- (none)")
    lines.append("Folders:")
    for rule in rules:
        kws = ", ".join(rule.keywords) or "(no keywords)"
        lines.append(f"- {rule.name}: {kws}")
    lines.append("Which folder should this file go to?")
    return "\n".join(lines)


def _match_rule_name(raw: str, rules: Sequence[Rule]) -> str | None:
    name = raw.strip().strip('"').strip("'").strip()
    if not name:
        return None
    for rule in rules:
        if rule.name == name:
            return rule.name
    lowered = name.lower()
    for rule in rules:
        if rule.name.lower() == lowered:
            return rule.name
    return None


def parse_verdict(text: str, rules: Sequence[Rule]) -> OracleVerdict | None:
    """Interpret the oracle's answer; None means it could not be understood."""

    body = (text or "").strip()
    if not body:
        return None
    m = _BRACED_RE.search(body)
    inner = (m.group(1) if m else body).strip()
    if not inner:
        return None
    if inner.upper() == NULL_SENTINEL:
        return OracleVerdict(kind="none")
    if PAIR_SEPARATOR in inner:
        parts = [p for p in inner.split(PAIR_SEPARATOR) if p.strip()]
        if len(parts) != 2:
            return None
        names = tuple(_match_rule_name(p, rules) for p in parts)
        if None in names or names[0] == names[1]:
            return None
        return OracleVerdict(kind="pair", names=names)  # type: ignore[arg-type]
    name = _match_rule_name(inner, rules)
    if name is None:
        return None
    return OracleVerdict(kind="single", names=(name,))


def extract_text(payload: Any) -> str:
    """Pull the reply text out of a chat-completions or messages-style body."""

    if isinstance(payload, dict):
        choices = payload.get("choices")
        if isinstance(choices, list) and choices:
            message = choices[0].get("message") if isinstance(choices[0], dict) else None
            if isinstance(message, dict) and isinstance(message.get("content"), str):
                return message["content"]
        content = payload.get("content")
        if isinstance(content, list) and content:
            block = content[0]
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                return block["text"]
    raise OracleCallError("Unrecognized oracle response shape")


class OracleClient:
    def __init__(self, settings: OracleSettings, *, session: aiohttp.ClientSession | None = None) -> None:
        self._settings = settings
        self._session = session
        # One token per stretched period; aiolimiter cannot acquire a fractional max_rate.
        rpm = max(1.0, float(settings.requests_per_minute))
        self._limiter = AsyncLimiter(max_rate=1.0, time_period=60.0 / rpm)

    @property
    def configured(self) -> bool:
        return self._settings.is_configured

    def _endpoint(self) -> URL:
        try:
            url = URL(self._settings.endpoint.strip())
        except ValueError as e:
            raise OracleConfigMissingError(f"Invalid oracle endpoint: {e}") from e
        if not url.is_absolute():
            raise OracleConfigMissingError("Oracle endpoint must be an absolute URL")
        return url

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        if not self.configured:
            raise OracleConfigMissingError("Oracle endpoint, model or API key not configured")
        url = self._endpoint()
        headers = {
            "Authorization": f"Bearer {self._settings.api_key}",
            "Content-Type": "application/json",
        }
        body = {
            "model": self._settings.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": 0,
            "max_tokens": 64,
        }
        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        try:
            async with self._limiter:
                if self._session is not None:
                    return await self._post(self._session, url, headers, body, timeout)
                async with aiohttp.ClientSession() as session:
                    return await self._post(session, url, headers, body, timeout)
        except OracleCallError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise OracleCallError(f"Oracle request failed: {e}") from e

    async def _post(
        self,
        session: aiohttp.ClientSession,
        url: URL,
        headers: dict[str, str],
        body: dict[str, Any],
        timeout: aiohttp.ClientTimeout,
    ) -> str:
        async with session.post(url, json=body, headers=headers, timeout=timeout) as resp:
            if resp.status >= 400:
                raise OracleCallError(f"HTTP {resp.status}", status=resp.status)
            payload = await resp.json(content_type=None)
        return extract_text(payload)

    async def decide(self, filename: str, urls: Sequence[str], titles: Sequence[str], rules: Sequence[Rule]) -> OracleVerdict | None:
        text = await self.complete(SYSTEM_PROMPT, build_user_prompt(filename, urls, titles, rules))
        verdict = parse_verdict(text, rules)
        if verdict is None:
            logger.info("Oracle reply not understood: %r", text[:200])
        return verdict
