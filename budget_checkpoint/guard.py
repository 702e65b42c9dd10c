"""Emergency detection for zone jumps that outrun the tier schedule."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum

from budget_checkpoint.schema import Zone
from budget_checkpoint.zones import zone_distance

logger = logging.getLogger(__name__)


class EmergencyCause(StrEnum):
    """Why the guard fired."""

    FRESH_BREACH = "fresh_breach"
    ZONE_SKIP = "zone_skip"


@dataclass(frozen=True, slots=True)
class EmergencyTrigger:
    """Priority interrupt returned next to normal scheduling output."""

    previous_zone: Zone
    new_zone: Zone
    cause: EmergencyCause


class EmergencyGuard:
    """Detect fresh ceiling breaches and multi-zone jumps within one report."""

    def check(self, previous_zone: Zone, new_zone: Zone) -> EmergencyTrigger | None:
        if new_zone is Zone.OVERFLOW and previous_zone is not Zone.OVERFLOW:
            cause = EmergencyCause.FRESH_BREACH
        elif zone_distance(previous_zone, new_zone) > 1:
            cause = EmergencyCause.ZONE_SKIP
        else:
            return None
        logger.warning("Emergency %s: zone %s -> %s", cause, previous_zone, new_zone)
        return EmergencyTrigger(previous_zone=previous_zone, new_zone=new_zone, cause=cause)
