"""Schema contract tests for profiles, notes, and obligations."""

from __future__ import annotations

import pytest
from budget_checkpoint.schema import (
    CheckpointDocument,
    CheckpointObligation,
    ObligationReason,
    Profile,
    ProgressNotes,
    Tier,
    TierKind,
    Zone,
    units_for_ratio,
)
from pydantic import ValidationError


def make_profile_payload(**overrides: object) -> dict[str, object]:
    """Create a valid camelCase profile payload for schema tests."""
    payload: dict[str, object] = {
        "profileId": "tokens",
        "maxBudget": 200_000,
        "warningRatio": 0.75,
        "criticalRatio": 0.90,
        "tiers": [[0.25, "quick"], [0.50, "detailed"], [0.75, "major"], [0.875, "final"]],
    }
    payload.update(overrides)
    return payload


def make_document(**overrides: object) -> CheckpointDocument:
    """Create a valid checkpoint document."""
    fields: dict[str, object] = {
        "tier": "quick",
        "session_id": "session-1",
        "usage_at_trigger": 50_000,
        "zone_at_trigger": Zone.NORMAL,
        "is_emergency": False,
        "completed": ("step one",),
    }
    fields.update(overrides)
    return CheckpointDocument(**fields)


@pytest.mark.unit
def test_profile_accepts_tier_pairs_and_infers_kinds() -> None:
    profile = Profile.model_validate(make_profile_payload())

    assert [tier.name for tier in profile.tiers] == ["quick", "detailed", "major", "final"]
    assert [tier.kind for tier in profile.tiers] == [
        TierKind.QUICK,
        TierKind.DETAILED,
        TierKind.MAJOR,
        TierKind.FINAL,
    ]


@pytest.mark.unit
def test_tier_kind_defaults_to_detailed_for_custom_names() -> None:
    tier = Tier.model_validate({"thresholdRatio": 0.4, "name": "midpoint"})
    explicit = Tier.model_validate({"thresholdRatio": 0.4, "name": "wrap-up", "kind": "final"})

    assert tier.kind is TierKind.DETAILED
    assert explicit.kind is TierKind.FINAL
    assert explicit.kind.requires_notes


@pytest.mark.unit
def test_profile_unit_thresholds_are_exact() -> None:
    profile = Profile.model_validate(make_profile_payload())

    assert profile.warning_units == 150_000
    assert profile.critical_units == 180_000
    assert [profile.tier_units(tier) for tier in profile.tiers] == [
        50_000,
        100_000,
        150_000,
        175_000,
    ]


@pytest.mark.unit
def test_units_for_ratio_rounds_up_fractional_thresholds() -> None:
    assert units_for_ratio(0.1, 10) == 1
    assert units_for_ratio(1 / 3, 10) == 4
    assert units_for_ratio(1.0, 7) == 7


@pytest.mark.unit
@pytest.mark.parametrize(
    "overrides",
    [
        {"maxBudget": 0},
        {"maxBudget": -10},
        {"maxBudget": True},
        {"warningRatio": 0.9, "criticalRatio": 0.9},
        {"warningRatio": 0.95, "criticalRatio": 0.9},
        {"criticalRatio": 1.0},
        {"tiers": []},
        {"tiers": [[0.5, "quick"], [0.25, "detailed"]]},
        {"tiers": [[0.5, "quick"], [0.5, "detailed"]]},
        {"tiers": [[0.25, "quick"], [0.5, "quick"]]},
        {"tiers": [[1.5, "quick"]]},
        {"tiers": [[0.5, "emergency"]]},
        {"tiers": [[0.5, "bad name"]]},
    ],
)
def test_profile_rejects_invariant_violations(overrides: dict[str, object]) -> None:
    with pytest.raises(ValidationError):
        Profile.model_validate(make_profile_payload(**overrides))


@pytest.mark.unit
def test_profile_rejects_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        Profile.model_validate(make_profile_payload(ceiling=5))


@pytest.mark.unit
def test_progress_notes_emptiness_ignores_whitespace() -> None:
    assert ProgressNotes().is_empty
    assert ProgressNotes(completed=("  ",), freeform_context="\n").is_empty
    assert not ProgressNotes(next_steps=("ship it",)).is_empty
    assert not ProgressNotes(freeform_context="context only").is_empty


@pytest.mark.unit
def test_progress_notes_accept_camel_case_keys() -> None:
    notes = ProgressNotes.model_validate(
        {"inProgress": ["a"], "nextSteps": ["b"], "freeformContext": "c"}
    )

    assert notes.in_progress == ("a",)
    assert notes.next_steps == ("b",)
    assert notes.freeform_context == "c"


@pytest.mark.unit
def test_document_payload_uses_stable_field_names() -> None:
    payload = make_document().to_payload()

    assert payload == {
        "schemaVersion": "v1",
        "tier": "quick",
        "sessionId": "session-1",
        "usageAtTrigger": 50_000,
        "zoneAtTrigger": "Normal",
        "isEmergency": False,
        "completed": ["step one"],
        "inProgress": [],
        "nextSteps": [],
    }


@pytest.mark.unit
def test_obligation_json_roundtrip() -> None:
    document = make_document(freeform_context="resume at shard 7")
    original = CheckpointObligation(
        session_id="session-1",
        profile_id="tokens",
        sequence=1,
        tier="quick",
        reason=ObligationReason.TIER,
        usage_at_trigger=50_000,
        zone_at_trigger=Zone.NORMAL,
        is_emergency=False,
        document=document,
    )

    restored = CheckpointObligation.model_validate_json(original.model_dump_json(by_alias=True))

    assert restored == original
    assert restored.key == "session-1:0001:quick"


@pytest.mark.unit
def test_obligation_rejects_mismatched_document() -> None:
    with pytest.raises(ValidationError):
        CheckpointObligation(
            session_id="session-1",
            profile_id="tokens",
            sequence=1,
            tier="quick",
            reason=ObligationReason.TIER,
            usage_at_trigger=60_000,
            zone_at_trigger=Zone.NORMAL,
            is_emergency=False,
            document=make_document(),
        )


@pytest.mark.unit
def test_zone_severity_order() -> None:
    severities = [zone.severity for zone in (Zone.NORMAL, Zone.WARNING, Zone.CRITICAL)]

    assert severities == [0, 1, 2]
    assert Zone.OVERFLOW.severity == 3
