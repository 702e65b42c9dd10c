"""Usage to urgency-zone classification."""

from __future__ import annotations

from budget_checkpoint.schema import Profile, Zone


def classify(usage: int, profile: Profile) -> Zone:
    """Classify cumulative usage against the profile's warning and critical ratios.

    Pure: identical inputs always yield the identical zone, and a larger usage never yields a
    less severe zone.
    """
    if usage > profile.max_budget:
        return Zone.OVERFLOW
    if usage >= profile.critical_units:
        return Zone.CRITICAL
    if usage >= profile.warning_units:
        return Zone.WARNING
    return Zone.NORMAL


def zone_distance(previous: Zone, new: Zone) -> int:
    """Return how many severity steps separate two zones (negative when de-escalating)."""
    return new.severity - previous.severity
