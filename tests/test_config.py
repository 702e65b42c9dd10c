"""Unit tests for environment-driven settings."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from budget_checkpoint.config import (
    DEFAULT_LOG_LEVEL,
    LOG_LEVEL_ENV_VAR,
    PROFILES_PATH_ENV_VAR,
    SINK_DB_PATH_ENV_VAR,
    SINK_DIR_ENV_VAR,
    WEBHOOK_URL_ENV_VAR,
    Settings,
    load_settings,
)

ALL_ENV_VARS = (
    PROFILES_PATH_ENV_VAR,
    SINK_DIR_ENV_VAR,
    SINK_DB_PATH_ENV_VAR,
    WEBHOOK_URL_ENV_VAR,
    LOG_LEVEL_ENV_VAR,
)


def clear_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove settings variables so values loaded from .env are also undone afterwards."""
    for name in ALL_ENV_VARS:
        monkeypatch.setenv(name, "placeholder")
        monkeypatch.delenv(name)


@pytest.mark.unit
def test_defaults_without_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clear_env(monkeypatch)

    settings = load_settings(dotenv_path=tmp_path / "missing.env")

    assert settings == Settings()
    assert settings.log_level == DEFAULT_LOG_LEVEL


@pytest.mark.unit
def test_reads_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    clear_env(monkeypatch)
    monkeypatch.setenv(SINK_DIR_ENV_VAR, str(tmp_path / "out"))
    monkeypatch.setenv(WEBHOOK_URL_ENV_VAR, "https://hooks.example/cp")
    monkeypatch.setenv(LOG_LEVEL_ENV_VAR, "DEBUG")

    settings = load_settings(dotenv_path=tmp_path / "missing.env")

    assert settings.sink_dir == tmp_path / "out"
    assert settings.webhook_url == "https://hooks.example/cp"
    assert settings.log_level == "DEBUG"
    assert settings.profiles_path is None


@pytest.mark.unit
def test_dotenv_does_not_override_environment(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> None:
    clear_env(monkeypatch)
    dotenv_path = tmp_path / ".env"
    dotenv_path.write_text(
        f"{SINK_DB_PATH_ENV_VAR}=from-dotenv.sqlite\n{LOG_LEVEL_ENV_VAR}=ERROR\n",
        encoding="utf-8",
    )
    monkeypatch.setenv(LOG_LEVEL_ENV_VAR, "INFO")

    settings = load_settings(dotenv_path=dotenv_path)

    assert settings.sink_db_path == Path("from-dotenv.sqlite")
    assert settings.log_level == "INFO"


@pytest.mark.unit
def test_load_catalog_from_configured_file(tmp_path: Path) -> None:
    path = tmp_path / "profiles.json"
    path.write_text(
        json.dumps(
            {
                "api-calls": {
                    "maxBudget": 500,
                    "warningRatio": 0.6,
                    "criticalRatio": 0.8,
                    "tiers": [[0.5, "quick"], [0.9, "final"]],
                }
            }
        ),
        encoding="utf-8",
    )

    assert Settings(profiles_path=path).load_catalog().ids() == ("api-calls",)
    assert "token-200k" in Settings().load_catalog()
