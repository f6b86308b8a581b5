from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

APP_HOME_ENV = "DOWNLOAD_ORGANIZER_HOME"
ORACLE_KEY_ENV = "DOWNLOAD_ORGANIZER_ORACLE_KEY"


@dataclass(frozen=True)
class AppPaths:
    app_dir: Path
    db_path: Path
    log_path: Path

    @classmethod
    def for_dir(cls, app_dir: Path) -> AppPaths:
        return cls(app_dir=app_dir, db_path=app_dir / "organizer.sqlite3", log_path=app_dir / "organizer.log")

    @property
    def config_path(self) -> Path:
        return self.app_dir / "config.json"


@dataclass(frozen=True)
class RoutingSettings:
    # Auto-accept bars, one per signal. Title and content are weaker evidence.
    filename_threshold: float = 75.0
    url_threshold: float = 75.0
    title_threshold: float = 60.0
    content_threshold: float = 50.0
    short_circuit_threshold: float = 75.0

    max_evidence_items: int = 3
    history_items: int = 3
    history_window_days: int = 7

    prompt_timeout_seconds: float = 15.0
    prompt_options: int = 2

    cache_entries_per_tab: int = 3
    cache_max_age_hours: float = 24.0
    content_penalty_base: float = 1.5
    max_tab_relationships: int = 500

    oracle_display_confidence: float = 90.0


@dataclass(frozen=True)
class OracleSettings:
    enabled: bool = False
    endpoint: str = ""
    api_key: str = ""
    model: str = ""
    timeout_seconds: float = 30.0
    requests_per_minute: float = 20.0

    @property
    def is_configured(self) -> bool:
        return bool(self.enabled and self.endpoint.strip() and self.api_key.strip() and self.model.strip())


def _coerce(cls, raw: Any):
    """Build a settings dataclass from a dict, keeping defaults for bad or missing fields."""

    if not isinstance(raw, dict):
        return cls()
    defaults = cls()
    kwargs: dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in raw:
            continue
        default = getattr(defaults, f.name)
        value = raw[f.name]
        try:
            if isinstance(default, bool):
                kwargs[f.name] = bool(value)
            elif isinstance(default, int):
                kwargs[f.name] = int(value)
            elif isinstance(default, float):
                kwargs[f.name] = float(value)
            else:
                kwargs[f.name] = str(value)
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid config value %s.%s=%r", cls.__name__, f.name, value)
    return cls(**kwargs)


def default_app_dir() -> Path:
    env = os.environ.get(APP_HOME_ENV, "").strip()
    if env:
        return Path(env).expanduser()
    return Path.home() / ".download_organizer"


@dataclass(frozen=True)
class AppConfig:
    paths: AppPaths
    routing: RoutingSettings = field(default_factory=RoutingSettings)
    oracle: OracleSettings = field(default_factory=OracleSettings)

    @classmethod
    def load(cls, app_dir: Path | None = None) -> AppConfig:
        paths = AppPaths.for_dir(app_dir or default_app_dir())
        paths.app_dir.mkdir(parents=True, exist_ok=True)

        data: dict[str, Any] = {}
        if paths.config_path.exists():
            try:
                loaded = json.loads(paths.config_path.read_text(encoding="utf-8"))
                if isinstance(loaded, dict):
                    data = loaded
            except (OSError, ValueError) as e:
                logger.warning("Could not read %s (%s); using defaults", paths.config_path, e)

        oracle = _coerce(OracleSettings, data.get("oracle"))
        env_key = os.environ.get(ORACLE_KEY_ENV, "").strip()
        if env_key and not oracle.api_key:
            oracle = OracleSettings(**{**asdict(oracle), "api_key": env_key})

        return cls(paths=paths, routing=_coerce(RoutingSettings, data.get("routing")), oracle=oracle)

    def save(self) -> None:
        self.paths.app_dir.mkdir(parents=True, exist_ok=True)
        oracle = asdict(self.oracle)
        # Keys supplied through the environment stay out of the file.
        if os.environ.get(ORACLE_KEY_ENV, "").strip() == self.oracle.api_key:
            oracle["api_key"] = ""
        payload = {"routing": asdict(self.routing), "oracle": oracle}
        tmp = self.paths.config_path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self.paths.config_path)
