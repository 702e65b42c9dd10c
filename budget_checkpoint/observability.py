"""Session telemetry models and logging setup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from budget_checkpoint.schema import CheckpointObligation, Zone

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@dataclass(slots=True)
class SessionTelemetry:
    """Counters for one session's reports and emitted obligations."""

    session_id: str
    reports: int = 0
    units_reported: int = 0
    obligations: int = 0
    emergencies: int = 0
    failed_deliveries: int = 0
    zone_changes: list[str] = field(default_factory=list)

    def record_report(self, delta: int) -> None:
        self.reports += 1
        self.units_reported += delta

    def record_zone_change(self, previous: Zone, new: Zone, *, usage: int) -> None:
        self.zone_changes.append(f"{previous}->{new}@{usage}")

    def record_obligations(self, obligations: list[CheckpointObligation]) -> None:
        self.obligations += len(obligations)
        self.emergencies += sum(1 for obligation in obligations if obligation.is_emergency)

    def to_dict(self) -> dict[str, object]:
        return {
            "session_id": self.session_id,
            "reports": self.reports,
            "units_reported": self.units_reported,
            "obligations": self.obligations,
            "emergencies": self.emergencies,
            "failed_deliveries": self.failed_deliveries,
            "zone_changes": list(self.zone_changes),
        }


def configure_logging(level: str | int = "WARNING") -> None:
    """Install a basic stderr handler for CLI runs."""
    resolved = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level '{level}'.")
    logging.basicConfig(level=resolved, format=LOG_FORMAT)
