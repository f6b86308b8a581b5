from __future__ import annotations

import re

from download_organizer.core.utils import base_filename

_DRIVE_RE = re.compile(r"^[A-Za-z]:[\\/]")


def normalize_destination(path: str) -> str:
    """Settings-side cleanup: trim and make sure a saved path ends in a separator."""

    p = (path or "").strip()
    if p and not p.endswith(("/", "\\")):
        p += "/"
    return p


def relative_destination(path: str) -> str:
    """Turn a configured folder into a download-relative one with a trailing slash.

    The browser only accepts paths below its download directory, so a drive
    letter and leading slashes are dropped and backslashes become slashes.
    """

    rel = _DRIVE_RE.sub("", (path or "").strip()).replace("\\", "/").lstrip("/")
    if rel and not rel.endswith("/"):
        rel += "/"
    return rel


def suggested_filename(download_filename: str, destination_path: str) -> str:
    return relative_destination(destination_path) + base_filename(download_filename)
