"""Immutable profile catalog loaded once at process start."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator, Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

from pydantic import ValidationError

from budget_checkpoint.errors import InvalidProfile, UnknownProfile
from budget_checkpoint.schema import Profile

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_ID = "token-200k"
DEFAULT_PROFILES: Mapping[str, Mapping[str, Any]] = MappingProxyType(
    {
        "token-200k": {
            "maxBudget": 200_000,
            "warningRatio": 0.75,
            "criticalRatio": 0.90,
            "tiers": [
                [0.25, "quick"],
                [0.50, "detailed"],
                [0.75, "major"],
                [0.875, "final"],
            ],
        },
        "token-1m": {
            "maxBudget": 1_000_000,
            "warningRatio": 0.70,
            "criticalRatio": 0.85,
            "tiers": [
                [0.20, "quick"],
                [0.40, "detailed"],
                [0.60, "detailed-2"],
                [0.80, "major"],
                [0.90, "final"],
            ],
        },
    }
)


class ProfileCatalog:
    """Read-only mapping of profile id to validated profile.

    Construction validates every profile before anything is stored, so a catalog is either
    complete or never built. Nothing mutates it afterwards, so concurrent reads need no lock.
    """

    __slots__ = ("_profiles",)

    def __init__(self, profiles: Mapping[str, Profile]) -> None:
        self._profiles: Mapping[str, Profile] = MappingProxyType(dict(profiles))

    @classmethod
    def load(cls, profiles: Mapping[str, Mapping[str, Any]]) -> ProfileCatalog:
        """Validate a raw ``profile_id -> body`` mapping and build a catalog."""
        validated: dict[str, Profile] = {}
        for profile_id, body in profiles.items():
            validated[profile_id] = _validate_profile(profile_id, body)
        if not validated:
            raise InvalidProfile("Profile configuration is empty.", profile_id="")
        logger.debug("Loaded %d profile(s): %s", len(validated), ", ".join(sorted(validated)))
        return cls(validated)

    @classmethod
    def from_json_file(cls, path: Path | str) -> ProfileCatalog:
        """Load a catalog from a JSON file holding the profile mapping."""
        file_path = Path(path)
        try:
            payload = json.loads(file_path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as error:
            raise InvalidProfile(
                f"Profile file '{file_path}' is not valid JSON: {error.msg}.",
                profile_id="",
            ) from error
        except OSError as error:
            raise InvalidProfile(
                f"Profile file '{file_path}' cannot be read: {error.strerror or error}.",
                profile_id="",
            ) from error
        if not isinstance(payload, dict):
            raise InvalidProfile(
                f"Profile file '{file_path}' must hold a JSON object of profiles.",
                profile_id="",
            )
        return cls.load(payload)

    @classmethod
    def default(cls) -> ProfileCatalog:
        """Build the catalog of built-in profiles."""
        return cls.load(DEFAULT_PROFILES)

    def resolve(self, profile_id: str) -> Profile:
        """Return the profile registered under ``profile_id``."""
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise UnknownProfile(f"Unknown profile '{profile_id}'.", profile_id=profile_id)
        return profile

    def ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._profiles))

    def __contains__(self, profile_id: object) -> bool:
        return profile_id in self._profiles

    def __iter__(self) -> Iterator[Profile]:
        return iter(self._profiles[profile_id] for profile_id in self.ids())

    def __len__(self) -> int:
        return len(self._profiles)


def _validate_profile(profile_id: str, body: Mapping[str, Any]) -> Profile:
    """Validate one profile body, translating schema errors into ``InvalidProfile``."""
    if not isinstance(body, Mapping):
        raise InvalidProfile(
            f"Profile '{profile_id}' must be an object.",
            profile_id=profile_id,
        )
    try:
        return Profile.model_validate({**body, "profileId": profile_id})
    except ValidationError as error:
        details = "; ".join(
            f"{'.'.join(str(part) for part in issue['loc']) or 'profile'}: {issue['msg']}"
            for issue in error.errors()
        )
        raise InvalidProfile(
            f"Invalid profile '{profile_id}': {details}",
            profile_id=profile_id,
        ) from error
