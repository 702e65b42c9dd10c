"""Checkpoint tier scheduling."""

from __future__ import annotations

from dataclasses import dataclass

from budget_checkpoint.schema import Profile, Tier
from budget_checkpoint.tracker import Session


@dataclass(frozen=True, slots=True)
class DueTier:
    """A tier whose threshold has been crossed and which has not fired yet."""

    tier: Tier
    threshold_units: int


class CheckpointScheduler:
    """Decide which checkpoint tiers are newly due for a session.

    Tiers are evaluated in one ascending pass. A single large report can cross several
    thresholds; every crossed tier is returned, lowest first, so none is skipped. Firing is
    recorded by the caller through ``mark_fired`` and a fired tier is never returned again.
    """

    def due(self, session: Session, profile: Profile) -> list[DueTier]:
        due: list[DueTier] = []
        for tier in profile.tiers:
            threshold_units = profile.tier_units(tier)
            if threshold_units > session.cumulative_usage:
                break
            if tier.name in session.fired_tiers:
                continue
            due.append(DueTier(tier=tier, threshold_units=threshold_units))
        return due

    def due_tiers(self, session: Session, profile: Profile) -> list[str]:
        """Return the names of newly due tiers in ascending threshold order."""
        return [item.tier.name for item in self.due(session, profile)]

    def next_tier(self, session: Session, profile: Profile) -> DueTier | None:
        """Return the lowest tier that is neither fired nor reached yet."""
        for tier in profile.tiers:
            threshold_units = profile.tier_units(tier)
            if tier.name in session.fired_tiers or threshold_units <= session.cumulative_usage:
                continue
            return DueTier(tier=tier, threshold_units=threshold_units)
        return None

    @staticmethod
    def mark_fired(session: Session, tier_names: list[str]) -> None:
        """Record tiers as fired. Raises if a tier would fire twice."""
        duplicates = session.fired_tiers.intersection(tier_names)
        if duplicates:
            raise RuntimeError(
                f"Tier(s) {sorted(duplicates)} already fired for session '{session.session_id}'."
            )
        session.fired_tiers.update(tier_names)
