from __future__ import annotations

import re

from yarl import URL

INTERNAL_SCHEMES = {"chrome", "edge", "about", "chrome-extension", "devtools"}


def base_filename(path: str) -> str:
    return re.split(r"[\\/]", path or "")[-1]


def strip_query(url: str) -> str:
    return (url or "").split("?", 1)[0].split("#", 1)[0]


def is_internal_url(url: str) -> bool:
    if not url:
        return True
    try:
        scheme = URL(url).scheme.lower()
    except ValueError:
        return False
    return scheme in INTERNAL_SCHEMES


def take_truthy(values, limit: int) -> list[str]:
    """Drop falsy values and keep at most `limit` of the rest, in order."""

    out = [str(v) for v in values if v]
    return out[: max(0, limit)]
