"""Environment-driven settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from budget_checkpoint.catalog import ProfileCatalog

PROFILES_PATH_ENV_VAR = "BUDGET_CHECKPOINT_PROFILES_PATH"
SINK_DIR_ENV_VAR = "BUDGET_CHECKPOINT_SINK_DIR"
SINK_DB_PATH_ENV_VAR = "BUDGET_CHECKPOINT_SINK_DB_PATH"
WEBHOOK_URL_ENV_VAR = "BUDGET_CHECKPOINT_WEBHOOK_URL"
LOG_LEVEL_ENV_VAR = "BUDGET_CHECKPOINT_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "WARNING"


@dataclass(frozen=True, slots=True)
class Settings:
    """Process settings resolved once at startup."""

    profiles_path: Path | None = None
    sink_dir: Path | None = None
    sink_db_path: Path | None = None
    webhook_url: str | None = None
    log_level: str = DEFAULT_LOG_LEVEL

    def load_catalog(self) -> ProfileCatalog:
        """Load the configured profile file, or the built-in profiles when unset."""
        if self.profiles_path is None:
            return ProfileCatalog.default()
        return ProfileCatalog.from_json_file(self.profiles_path)


def _optional_path(env_var: str) -> Path | None:
    value = os.getenv(env_var)
    return Path(value) if value else None


def load_settings(*, dotenv_path: Path | None = None) -> Settings:
    """Read settings from the environment after loading ``.env`` without overriding it."""
    load_dotenv(dotenv_path=dotenv_path or Path.cwd() / ".env", override=False)
    return Settings(
        profiles_path=_optional_path(PROFILES_PATH_ENV_VAR),
        sink_dir=_optional_path(SINK_DIR_ENV_VAR),
        sink_db_path=_optional_path(SINK_DB_PATH_ENV_VAR),
        webhook_url=os.getenv(WEBHOOK_URL_ENV_VAR) or None,
        log_level=os.getenv(LOG_LEVEL_ENV_VAR) or DEFAULT_LOG_LEVEL,
    )
