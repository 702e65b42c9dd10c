"""Session orchestration: usage reports in, checkpoint obligations out."""

from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from typing import Any

from budget_checkpoint.catalog import ProfileCatalog
from budget_checkpoint.composer import HandoffComposer
from budget_checkpoint.errors import (
    SessionTerminal,
    SinkDeliveryError,
    UnknownSession,
    UsageOverflow,
)
from budget_checkpoint.guard import EmergencyGuard, EmergencyTrigger
from budget_checkpoint.observability import SessionTelemetry
from budget_checkpoint.scheduler import CheckpointScheduler, DueTier
from budget_checkpoint.schema import (
    COMPLETION_TIER,
    EMERGENCY_TIER,
    HANDOFF_TIER,
    CheckpointObligation,
    ObligationReason,
    Profile,
    ProgressNotes,
    SessionState,
    Tier,
)
from budget_checkpoint.sinks import CheckpointSink
from budget_checkpoint.tracker import BudgetTracker, Session
from budget_checkpoint.zones import classify

logger = logging.getLogger(__name__)

NotesInput = ProgressNotes | Mapping[str, Any] | None


def coerce_notes(notes: NotesInput) -> ProgressNotes | None:
    """Accept notes as a model or a plain mapping (camelCase or snake_case keys)."""
    if notes is None or isinstance(notes, ProgressNotes):
        return notes
    return ProgressNotes.model_validate(dict(notes))


class SessionController:
    """Own one session and route its usage reports through tracking and scheduling.

    All state changes for the session happen under one lock, so the tracker, classifier,
    and scheduler always see a consistent snapshot and a tier can never fire twice.
    Obligations are offered to the sink after the lock is released. One report delivers its
    obligations in sequence order, but concurrent reporters on the same session may reach
    the sink interleaved, so a sink can see sequence N+1 before N. Any delivery failure keeps
    the obligation on ``undelivered`` for the caller to retry.
    """

    def __init__(
        self,
        session_id: str,
        profile_id: str,
        catalog: ProfileCatalog,
        *,
        sink: CheckpointSink | None = None,
        tracker: BudgetTracker | None = None,
        scheduler: CheckpointScheduler | None = None,
        guard: EmergencyGuard | None = None,
        composer: HandoffComposer | None = None,
    ) -> None:
        if not session_id:
            raise ValueError("session_id must not be empty.")
        self._profile: Profile = catalog.resolve(profile_id)
        self._session = Session(session_id=session_id, profile_id=profile_id)
        self._sink = sink
        self._tracker = tracker or BudgetTracker()
        self._scheduler = scheduler or CheckpointScheduler()
        self._guard = guard or EmergencyGuard()
        self._composer = composer or HandoffComposer()
        self._lock = threading.Lock()
        self._undelivered: list[CheckpointObligation] = []
        self.telemetry = SessionTelemetry(session_id=session_id)

    @property
    def session_id(self) -> str:
        return self._session.session_id

    @property
    def profile(self) -> Profile:
        return self._profile

    @property
    def session(self) -> Session:
        return self._session

    @property
    def undelivered(self) -> tuple[CheckpointObligation, ...]:
        with self._lock:
            return tuple(self._undelivered)

    def report_usage(
        self,
        delta: int,
        notes: NotesInput = None,
    ) -> list[CheckpointObligation]:
        """Record ``delta`` units and return the obligations it made due, in order."""
        progress_notes = coerce_notes(notes)
        overflow: UsageOverflow | None = None
        obligations: list[CheckpointObligation] = []
        with self._lock:
            try:
                self._tracker.apply(self._session, delta)
            except UsageOverflow as error:
                error.obligation = self._force_overflow_handoff(progress_notes)
                overflow = error
            else:
                obligations = self._schedule(delta, progress_notes)

        if overflow is not None:
            if overflow.obligation is not None:
                self._deliver([overflow.obligation])
            raise overflow
        self._deliver(obligations)
        return obligations

    def complete(self, notes: NotesInput = None) -> CheckpointObligation:
        """Close the session and emit the final mandatory checkpoint."""
        obligation = self._close(
            COMPLETION_TIER,
            ObligationReason.COMPLETION,
            SessionState.COMPLETED,
            coerce_notes(notes),
        )
        self._deliver([obligation])
        return obligation

    def hand_off(self, notes: NotesInput = None) -> CheckpointObligation:
        """Close the session as an operator-initiated transfer and emit the handoff record."""
        obligation = self._close(
            HANDOFF_TIER,
            ObligationReason.HANDOFF,
            SessionState.HANDED_OFF,
            coerce_notes(notes),
        )
        self._deliver([obligation])
        return obligation

    def retry_undelivered(self) -> list[CheckpointObligation]:
        """Offer every undelivered obligation to the sink again; return those still failing."""
        with self._lock:
            pending = self._undelivered
            self._undelivered = []
        self._deliver(pending)
        return list(self.undelivered)

    def snapshot(self) -> dict[str, Any]:
        """Return a plain view of the session for status output."""
        with self._lock:
            session = self._session
            next_tier = self._scheduler.next_tier(session, self._profile)
            return {
                "session_id": session.session_id,
                "profile_id": session.profile_id,
                "state": str(session.state),
                "zone": str(session.zone),
                "cumulative_usage": session.cumulative_usage,
                "last_checkpoint_usage": session.last_checkpoint_usage,
                "max_budget": self._profile.max_budget,
                "budget_remaining": max(0, self._profile.max_budget - session.cumulative_usage),
                "usage_ratio": session.cumulative_usage / self._profile.max_budget,
                "fired_tiers": [
                    tier.name for tier in self._profile.tiers if tier.name in session.fired_tiers
                ],
                "next_tier": next_tier.tier.name if next_tier else None,
                "next_tier_at": next_tier.threshold_units if next_tier else None,
                "obligations_emitted": session.obligations_emitted,
            }

    def _schedule(
        self,
        delta: int,
        notes: ProgressNotes | None,
    ) -> list[CheckpointObligation]:
        """Reclassify after an applied delta and emit whatever became due.

        ``IncompleteNotes`` from composition propagates before any tier is marked fired, so
        the next report can retry the same tiers.
        """
        session = self._session
        self.telemetry.record_report(delta)
        previous_zone = session.zone
        new_zone = classify(session.cumulative_usage, self._profile)
        if new_zone is not previous_zone:
            logger.info(
                "Session %s zone %s -> %s at %d/%d",
                session.session_id,
                previous_zone,
                new_zone,
                session.cumulative_usage,
                self._profile.max_budget,
            )
            self.telemetry.record_zone_change(
                previous_zone, new_zone, usage=session.cumulative_usage
            )
            session.zone = new_zone
        due = self._scheduler.due(session, self._profile)
        trigger = self._guard.check(previous_zone, new_zone)
        obligations = self._plan(due, trigger, notes)
        self._scheduler.mark_fired(session, [item.tier.name for item in due])
        self._commit(obligations)
        return obligations

    def _plan(
        self,
        due: list[DueTier],
        trigger: EmergencyTrigger | None,
        notes: ProgressNotes | None,
    ) -> list[CheckpointObligation]:
        """Compose the obligations for one report without mutating the session."""
        regular = due
        merged: Tier | None = None
        if trigger is not None and due:
            regular, merged = due[:-1], due[-1].tier

        sequence = self._session.obligations_emitted
        obligations: list[CheckpointObligation] = []
        for item in regular:
            sequence += 1
            obligations.append(
                self._composer.compose_obligation(
                    self._session,
                    item.tier,
                    notes,
                    reason=ObligationReason.TIER,
                    sequence=sequence,
                    require_notes=trigger is None,
                )
            )
        if trigger is not None:
            sequence += 1
            obligations.append(
                self._composer.compose_obligation(
                    self._session,
                    merged if merged is not None else EMERGENCY_TIER,
                    notes,
                    reason=ObligationReason.EMERGENCY,
                    sequence=sequence,
                    is_emergency=True,
                )
            )
        return obligations

    def _commit(self, obligations: list[CheckpointObligation]) -> None:
        if not obligations:
            return
        self._session.obligations_emitted += len(obligations)
        self._session.last_checkpoint_usage = self._session.cumulative_usage
        self.telemetry.record_obligations(obligations)
        logger.info(
            "Session %s emitted %s at %d",
            self._session.session_id,
            ", ".join(obligation.tier for obligation in obligations),
            self._session.cumulative_usage,
        )

    def _close(
        self,
        tier: str,
        reason: ObligationReason,
        state: SessionState,
        notes: ProgressNotes | None,
    ) -> CheckpointObligation:
        with self._lock:
            session = self._session
            if session.state.is_terminal:
                raise SessionTerminal(
                    f"Session '{session.session_id}' is already {session.state}.",
                    session_id=session.session_id,
                    state=session.state,
                )
            obligation = self._composer.compose_obligation(
                session,
                tier,
                notes,
                reason=reason,
                sequence=session.obligations_emitted + 1,
            )
            session.state = state
            self._commit([obligation])
        return obligation

    def _force_overflow_handoff(self, notes: ProgressNotes | None) -> CheckpointObligation:
        """Hand the session off with an emergency record after a numeric-range overflow."""
        session = self._session
        logger.error(
            "Session %s usage left the supported range at %d; forcing handoff",
            session.session_id,
            session.cumulative_usage,
        )
        obligation = self._composer.compose_obligation(
            session,
            HANDOFF_TIER,
            notes,
            reason=ObligationReason.HANDOFF,
            sequence=session.obligations_emitted + 1,
            is_emergency=True,
        )
        session.state = SessionState.HANDED_OFF
        self._commit([obligation])
        return obligation

    def _deliver(self, obligations: list[CheckpointObligation]) -> None:
        if self._sink is None:
            return
        for obligation in obligations:
            try:
                self._sink.deliver(obligation)
            except SinkDeliveryError as error:
                logger.warning("Checkpoint %s not delivered: %s", obligation.key, error)
                self._hold_for_retry(obligation)
            except Exception:
                # Tiers are already fired; the obligation must stay retryable.
                logger.exception("Sink raised unexpectedly for checkpoint %s", obligation.key)
                self._hold_for_retry(obligation)

    def _hold_for_retry(self, obligation: CheckpointObligation) -> None:
        with self._lock:
            self._undelivered.append(obligation)
            self.telemetry.failed_deliveries += 1


class SessionRegistry:
    """Boundary keyed by session id over independent session controllers."""

    def __init__(self, catalog: ProfileCatalog, *, sink: CheckpointSink | None = None) -> None:
        self._catalog = catalog
        self._sink = sink
        self._controllers: dict[str, SessionController] = {}
        self._lock = threading.Lock()

    @property
    def catalog(self) -> ProfileCatalog:
        return self._catalog

    def open_session(self, session_id: str, profile_id: str) -> SessionController:
        """Register a new active session under ``profile_id``."""
        with self._lock:
            if session_id in self._controllers:
                raise ValueError(f"Session '{session_id}' is already registered.")
            controller = SessionController(session_id, profile_id, self._catalog, sink=self._sink)
            self._controllers[session_id] = controller
        logger.info("Opened session %s with profile %s", session_id, profile_id)
        return controller

    def get(self, session_id: str) -> SessionController:
        with self._lock:
            controller = self._controllers.get(session_id)
        if controller is None:
            raise UnknownSession(f"Unknown session '{session_id}'.", session_id=session_id)
        return controller

    def sessions(self) -> tuple[str, ...]:
        with self._lock:
            return tuple(self._controllers)

    def report_usage(
        self,
        session_id: str,
        delta_units: int,
        notes: NotesInput = None,
    ) -> list[CheckpointObligation]:
        return self.get(session_id).report_usage(delta_units, notes)

    def complete_session(
        self,
        session_id: str,
        final_notes: NotesInput = None,
    ) -> CheckpointObligation:
        return self.get(session_id).complete(final_notes)

    def hand_off_session(
        self,
        session_id: str,
        handoff_notes: NotesInput = None,
    ) -> CheckpointObligation:
        return self.get(session_id).hand_off(handoff_notes)
