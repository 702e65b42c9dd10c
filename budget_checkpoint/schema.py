"""Schema contract for profiles, progress notes, and checkpoint obligations."""

from __future__ import annotations

import math
import re
from enum import StrEnum
from fractions import Fraction
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

SCHEMA_VERSION = "v1"
EMERGENCY_TIER = "emergency"
COMPLETION_TIER = "completion"
HANDOFF_TIER = "handoff"
RESERVED_TIER_NAMES = frozenset({EMERGENCY_TIER, COMPLETION_TIER, HANDOFF_TIER})
TIER_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")


class Zone(StrEnum):
    """Urgency zone derived from the usage ratio, ordered by severity."""

    NORMAL = "Normal"
    WARNING = "Warning"
    CRITICAL = "Critical"
    OVERFLOW = "Overflow"

    @property
    def severity(self) -> int:
        """Return the zero-based severity rank of the zone."""
        return ZONE_ORDER.index(self)


ZONE_ORDER: tuple[Zone, ...] = (Zone.NORMAL, Zone.WARNING, Zone.CRITICAL, Zone.OVERFLOW)


class SessionState(StrEnum):
    """Session lifecycle state."""

    ACTIVE = "active"
    COMPLETED = "completed"
    HANDED_OFF = "handed_off"

    @property
    def is_terminal(self) -> bool:
        return self is not SessionState.ACTIVE


class TierKind(StrEnum):
    """Checkpoint tier weight. Major and final tiers require progress notes."""

    QUICK = "quick"
    DETAILED = "detailed"
    MAJOR = "major"
    FINAL = "final"

    @property
    def requires_notes(self) -> bool:
        return self in (TierKind.MAJOR, TierKind.FINAL)


class ObligationReason(StrEnum):
    """Why an obligation was emitted."""

    TIER = "tier"
    EMERGENCY = "emergency"
    COMPLETION = "completion"
    HANDOFF = "handoff"


def units_for_ratio(ratio: float, max_budget: int) -> int:
    """Convert a budget ratio into the smallest integer usage that reaches it.

    The ratio is read through its decimal representation so ``0.9 * 200000`` is exactly
    ``180000`` rather than a float that lands one unit off.
    """
    return math.ceil(Fraction(str(ratio)) * max_budget)


class _ContractModel(BaseModel):
    """Shared configuration: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


class Tier(_ContractModel):
    """One checkpoint tier: a named fraction of the budget."""

    threshold_ratio: float = Field(gt=0.0, le=1.0)
    name: str = Field(min_length=1)
    kind: TierKind = TierKind.DETAILED

    @model_validator(mode="before")
    @classmethod
    def coerce_pair(cls, value: Any) -> Any:
        """Accept ``[ratio, name]`` pairs and infer ``kind`` from the name when absent."""
        if isinstance(value, (list, tuple)):
            if len(value) != 2:
                raise ValueError("tier pairs must be [thresholdRatio, name].")
            value = {"threshold_ratio": value[0], "name": value[1]}
        if isinstance(value, dict) and value.get("kind") is None:
            name = value.get("name")
            value = {key: item for key, item in value.items() if key != "kind"}
            if isinstance(name, str) and name.lower() in {kind.value for kind in TierKind}:
                value["kind"] = TierKind(name.lower())
        return value

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        """Reject reserved labels and names that are unsafe as file or key fragments."""
        if not TIER_NAME_PATTERN.fullmatch(value):
            raise ValueError(f"tier name '{value}' must be alphanumeric with '_', '.', '-'.")
        if value in RESERVED_TIER_NAMES:
            raise ValueError(f"tier name '{value}' is reserved.")
        return value


class Profile(_ContractModel):
    """Immutable resource ceiling with its zone and tier policy."""

    profile_id: str = Field(min_length=1)
    max_budget: int = Field(gt=0, strict=True)
    warning_ratio: float = Field(gt=0.0, lt=1.0)
    critical_ratio: float = Field(gt=0.0, lt=1.0)
    tiers: tuple[Tier, ...] = Field(min_length=1)

    @model_validator(mode="after")
    def validate_policy(self) -> Profile:
        """Validate ratio ordering and tier ordering."""
        if self.warning_ratio >= self.critical_ratio:
            raise ValueError("warningRatio must be smaller than criticalRatio.")
        previous: float | None = None
        seen: set[str] = set()
        for tier in self.tiers:
            if previous is not None and tier.threshold_ratio <= previous:
                raise ValueError("tiers must be strictly increasing in thresholdRatio.")
            if tier.name in seen:
                raise ValueError(f"duplicate tier name '{tier.name}'.")
            previous = tier.threshold_ratio
            seen.add(tier.name)
        return self

    @property
    def warning_units(self) -> int:
        return units_for_ratio(self.warning_ratio, self.max_budget)

    @property
    def critical_units(self) -> int:
        return units_for_ratio(self.critical_ratio, self.max_budget)

    def tier_units(self, tier: Tier) -> int:
        """Return the cumulative usage at which ``tier`` becomes due."""
        return units_for_ratio(tier.threshold_ratio, self.max_budget)

    def tier_named(self, name: str) -> Tier:
        for tier in self.tiers:
            if tier.name == name:
                return tier
        raise KeyError(name)


class ProgressNotes(_ContractModel):
    """Caller-supplied progress state merged into checkpoint documents."""

    completed: tuple[str, ...] = ()
    in_progress: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()
    freeform_context: str | None = None

    @property
    def is_empty(self) -> bool:
        """Return whether the notes carry no substantive content at all."""
        items = (*self.completed, *self.in_progress, *self.next_steps)
        if any(item.strip() for item in items):
            return False
        return not (self.freeform_context or "").strip()


class CheckpointDocument(_ContractModel):
    """Stable-schema checkpoint/handoff document consumed by external sinks."""

    schema_version: str = Field(default=SCHEMA_VERSION, pattern=r"^v\d+$")
    tier: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    usage_at_trigger: int = Field(ge=0)
    zone_at_trigger: Zone
    is_emergency: bool
    completed: tuple[str, ...] = ()
    in_progress: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()
    freeform_context: str | None = None

    def to_payload(self) -> dict[str, Any]:
        """Dump the document with its canonical camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CheckpointObligation(_ContractModel):
    """Immutable record handed to the external sink; never recalled once emitted."""

    session_id: str = Field(min_length=1)
    profile_id: str = Field(min_length=1)
    sequence: int = Field(ge=1)
    tier: str = Field(min_length=1)
    reason: ObligationReason
    usage_at_trigger: int = Field(ge=0)
    zone_at_trigger: Zone
    is_emergency: bool
    document: CheckpointDocument

    @model_validator(mode="after")
    def validate_document_matches(self) -> CheckpointObligation:
        """Validate that the document repeats the obligation's trigger metadata."""
        document = self.document
        if (
            document.tier != self.tier
            or document.session_id != self.session_id
            or document.usage_at_trigger != self.usage_at_trigger
            or document.zone_at_trigger != self.zone_at_trigger
            or document.is_emergency != self.is_emergency
        ):
            raise ValueError("document metadata must match the obligation trigger metadata.")
        return self

    @property
    def key(self) -> str:
        """Return the idempotency key sinks use to deduplicate deliveries."""
        return f"{self.session_id}:{self.sequence:04d}:{self.tier}"

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
