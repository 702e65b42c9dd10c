"""Error taxonomy for budget tracking and checkpoint scheduling."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from budget_checkpoint.schema import CheckpointObligation


class BudgetCheckpointError(RuntimeError):
    """Base class for all engine errors."""


class InvalidProfile(BudgetCheckpointError, ValueError):
    """Raised when a profile violates its invariants at catalog load time."""

    def __init__(self, message: str, *, profile_id: str) -> None:
        super().__init__(message)
        self.profile_id = profile_id


class UnknownProfile(BudgetCheckpointError, LookupError):
    """Raised when a profile id is not present in the catalog."""

    def __init__(self, message: str, *, profile_id: str) -> None:
        super().__init__(message)
        self.profile_id = profile_id


class UnknownSession(BudgetCheckpointError, LookupError):
    """Raised when a session id is not registered."""

    def __init__(self, message: str, *, session_id: str) -> None:
        super().__init__(message)
        self.session_id = session_id


class NegativeDelta(BudgetCheckpointError, ValueError):
    """Raised when a usage report carries a negative delta."""

    def __init__(self, message: str, *, session_id: str, delta: int) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.delta = delta


class SessionTerminal(BudgetCheckpointError):
    """Raised when a closed session receives a usage report or lifecycle call."""

    def __init__(self, message: str, *, session_id: str, state: str) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.state = state


class UsageOverflow(BudgetCheckpointError):
    """Raised when cumulative usage would leave the supported numeric range.

    The session is forced into a handed-off state; the emergency obligation emitted for it is
    attached as ``obligation`` once the controller has built it.
    """

    def __init__(
        self,
        message: str,
        *,
        session_id: str,
        cumulative_usage: int,
        delta: int,
        obligation: CheckpointObligation | None = None,
    ) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.cumulative_usage = cumulative_usage
        self.delta = delta
        self.obligation = obligation


class IncompleteNotes(BudgetCheckpointError, ValueError):
    """Raised when a major or final tier is composed from empty progress notes."""

    def __init__(self, message: str, *, session_id: str, tier: str) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.tier = tier


class SinkDeliveryError(BudgetCheckpointError):
    """Raised by a checkpoint sink when an obligation could not be persisted."""

    def __init__(self, message: str, *, obligation_key: str) -> None:
        super().__init__(message)
        self.obligation_key = obligation_key
