from __future__ import annotations

import json
from pathlib import Path

import pytest

from download_organizer.core.config import ORACLE_KEY_ENV, AppConfig, OracleSettings, RoutingSettings
from download_organizer.core.utils import base_filename, is_internal_url, strip_query, take_truthy


def test_defaults_when_no_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ORACLE_KEY_ENV, raising=False)
    config = AppConfig.load(tmp_path)
    assert config.routing == RoutingSettings()
    assert config.routing.title_threshold == 60.0
    assert config.routing.content_threshold == 50.0
    assert not config.oracle.is_configured
    assert config.paths.db_path == tmp_path / "organizer.sqlite3"


def test_file_values_override_and_bad_values_are_ignored(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(ORACLE_KEY_ENV, raising=False)
    (tmp_path / "config.json").write_text(
        json.dumps({"routing": {"content_threshold": 40, "prompt_options": "lots", "unknown": 1}}),
        encoding="utf-8",
    )
    config = AppConfig.load(tmp_path)
    assert config.routing.content_threshold == 40.0
    assert config.routing.prompt_options == 2


def test_unreadable_file_falls_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "config.json").write_text("{", encoding="utf-8")
    assert AppConfig.load(tmp_path).routing == RoutingSettings()


def test_oracle_key_from_environment_is_not_saved(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv(ORACLE_KEY_ENV, "sk-env")
    (tmp_path / "config.json").write_text(
        json.dumps({"oracle": {"enabled": True, "endpoint": "https://llm.example.com/v1", "model": "m"}}),
        encoding="utf-8",
    )
    config = AppConfig.load(tmp_path)
    assert config.oracle.api_key == "sk-env"
    assert config.oracle.is_configured

    config.save()
    saved = json.loads((tmp_path / "config.json").read_text(encoding="utf-8"))
    assert saved["oracle"]["api_key"] == ""
    assert saved["oracle"]["model"] == "m"


def test_oracle_needs_every_field() -> None:
    assert not OracleSettings(enabled=True, endpoint="https://x", api_key="k").is_configured
    assert not OracleSettings(enabled=False, endpoint="https://x", api_key="k", model="m").is_configured


def test_url_helpers() -> None:
    assert base_filename("C:\\a\\b/c.zip") == "c.zip"
    assert strip_query("https://a.com/x?q=1#f") == "https://a.com/x"
    assert is_internal_url("chrome://newtab")
    assert is_internal_url("")
    assert not is_internal_url("https://a.com")
    assert take_truthy(["", None, "a", "b", "c", "d"], 3) == ["a", "b", "c"]
