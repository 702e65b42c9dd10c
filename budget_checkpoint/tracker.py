"""Per-session cumulative usage accounting."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from budget_checkpoint.errors import NegativeDelta, SessionTerminal, UsageOverflow
from budget_checkpoint.schema import SessionState, Zone

logger = logging.getLogger(__name__)

USAGE_CEILING = 2**64 - 1


@dataclass(slots=True)
class Session:
    """Mutable state of one monitored session, owned by a single controller."""

    session_id: str
    profile_id: str
    cumulative_usage: int = 0
    last_checkpoint_usage: int = 0
    zone: Zone = Zone.NORMAL
    fired_tiers: set[str] = field(default_factory=set)
    state: SessionState = SessionState.ACTIVE
    obligations_emitted: int = 0


class BudgetTracker:
    """Source of truth for how much of a session's budget has been spent.

    Usage is never clamped to the profile ceiling: a breach is reported through the
    ``Overflow`` zone, while the recorded usage stays exact.
    """

    def __init__(self, ceiling: int = USAGE_CEILING) -> None:
        self._ceiling = ceiling

    def apply(self, session: Session, delta: int) -> int:
        """Add ``delta`` to the session's cumulative usage and return the new total."""
        if isinstance(delta, bool) or not isinstance(delta, int):
            raise TypeError(f"Usage delta must be an integer, got {type(delta).__name__}.")
        if session.state.is_terminal:
            raise SessionTerminal(
                f"Session '{session.session_id}' is {session.state}; usage reports are closed.",
                session_id=session.session_id,
                state=session.state,
            )
        if delta < 0:
            raise NegativeDelta(
                f"Usage delta must not be negative, got {delta}.",
                session_id=session.session_id,
                delta=delta,
            )
        if session.cumulative_usage > self._ceiling - delta:
            raise UsageOverflow(
                f"Session '{session.session_id}' usage {session.cumulative_usage} + {delta} "
                f"exceeds the supported range ({self._ceiling}).",
                session_id=session.session_id,
                cumulative_usage=session.cumulative_usage,
                delta=delta,
            )
        session.cumulative_usage += delta
        logger.debug(
            "Session %s usage +%d -> %d", session.session_id, delta, session.cumulative_usage
        )
        return session.cumulative_usage
