"""Unit tests for zone classification and the emergency guard."""

from __future__ import annotations

import random

import pytest
from budget_checkpoint.catalog import ProfileCatalog
from budget_checkpoint.guard import EmergencyCause, EmergencyGuard
from budget_checkpoint.schema import Zone
from budget_checkpoint.zones import classify, zone_distance


@pytest.mark.unit
@pytest.mark.parametrize(
    ("usage", "zone"),
    [
        (0, Zone.NORMAL),
        (149_999, Zone.NORMAL),
        (150_000, Zone.WARNING),
        (179_999, Zone.WARNING),
        (180_000, Zone.CRITICAL),
        (200_000, Zone.CRITICAL),
        (200_001, Zone.OVERFLOW),
    ],
)
def test_classify_boundaries(catalog: ProfileCatalog, usage: int, zone: Zone) -> None:
    assert classify(usage, catalog.resolve("token-200k")) is zone


@pytest.mark.unit
def test_classify_is_pure_and_monotonic(catalog: ProfileCatalog) -> None:
    profile = catalog.resolve("token-200k")
    rng = random.Random(7)
    usages = sorted(rng.randrange(0, 260_000) for _ in range(500))

    zones = [classify(usage, profile) for usage in usages]

    assert zones == [classify(usage, profile) for usage in usages]
    assert all(
        earlier.severity <= later.severity for earlier, later in zip(zones, zones[1:], strict=False)
    )


@pytest.mark.unit
def test_zone_distance() -> None:
    assert zone_distance(Zone.NORMAL, Zone.CRITICAL) == 2
    assert zone_distance(Zone.CRITICAL, Zone.WARNING) == -1


@pytest.mark.unit
@pytest.mark.parametrize(
    ("previous", "new"),
    [
        (Zone.NORMAL, Zone.NORMAL),
        (Zone.NORMAL, Zone.WARNING),
        (Zone.WARNING, Zone.CRITICAL),
        (Zone.OVERFLOW, Zone.OVERFLOW),
    ],
)
def test_guard_ignores_single_step_transitions(previous: Zone, new: Zone) -> None:
    assert EmergencyGuard().check(previous, new) is None


@pytest.mark.unit
@pytest.mark.parametrize(
    ("previous", "new", "cause"),
    [
        (Zone.CRITICAL, Zone.OVERFLOW, EmergencyCause.FRESH_BREACH),
        (Zone.NORMAL, Zone.OVERFLOW, EmergencyCause.FRESH_BREACH),
        (Zone.NORMAL, Zone.CRITICAL, EmergencyCause.ZONE_SKIP),
    ],
)
def test_guard_fires(previous: Zone, new: Zone, cause: EmergencyCause) -> None:
    trigger = EmergencyGuard().check(previous, new)

    assert trigger is not None
    assert trigger.cause is cause
    assert trigger.previous_zone is previous
    assert trigger.new_zone is new
