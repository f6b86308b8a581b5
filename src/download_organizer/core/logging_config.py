from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler

from download_organizer.core.config import AppConfig


def configure_logging(config: AppConfig, *, verbose: bool = False) -> None:
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    config.paths.log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        config.paths.log_path,
        maxBytes=2_000_000,
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setFormatter(fmt)

    # Console output goes to stderr so command output on stdout stays clean.
    console = logging.StreamHandler()
    console.setFormatter(fmt)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)

    root.handlers.clear()
    root.addHandler(file_handler)
    root.addHandler(console)
