"""Checkpoint and handoff document assembly."""

from __future__ import annotations

from budget_checkpoint.errors import IncompleteNotes
from budget_checkpoint.schema import (
    CheckpointDocument,
    CheckpointObligation,
    ObligationReason,
    ProgressNotes,
    Tier,
)
from budget_checkpoint.tracker import Session

EMPTY_NOTES = ProgressNotes()


class HandoffComposer:
    """Merge session metadata with caller-supplied progress notes.

    The composer never invents progress content: every list entry in a document comes from
    the notes it was given, trimmed and with blank entries dropped.
    """

    def compose(
        self,
        session: Session,
        tier: Tier | str,
        notes: ProgressNotes | None,
        *,
        is_emergency: bool = False,
        require_notes: bool = True,
    ) -> CheckpointDocument:
        """Build a checkpoint document for ``tier`` from the session's current state.

        ``tier`` is either a scheduled tier or a reserved label (emergency, completion,
        handoff). Major and final scheduled tiers raise ``IncompleteNotes`` on entirely empty
        notes unless ``require_notes`` is false or the document is an emergency.
        """
        resolved_notes = notes or EMPTY_NOTES
        tier_name = tier.name if isinstance(tier, Tier) else tier
        if (
            isinstance(tier, Tier)
            and tier.kind.requires_notes
            and require_notes
            and not is_emergency
            and resolved_notes.is_empty
        ):
            raise IncompleteNotes(
                f"Tier '{tier_name}' ({tier.kind}) requires progress notes; none were supplied.",
                session_id=session.session_id,
                tier=tier_name,
            )
        context = (resolved_notes.freeform_context or "").strip()
        return CheckpointDocument(
            tier=tier_name,
            session_id=session.session_id,
            usage_at_trigger=session.cumulative_usage,
            zone_at_trigger=session.zone,
            is_emergency=is_emergency,
            completed=_clean(resolved_notes.completed),
            in_progress=_clean(resolved_notes.in_progress),
            next_steps=_clean(resolved_notes.next_steps),
            freeform_context=context or None,
        )

    def compose_obligation(
        self,
        session: Session,
        tier: Tier | str,
        notes: ProgressNotes | None,
        *,
        reason: ObligationReason,
        sequence: int,
        is_emergency: bool = False,
        require_notes: bool = True,
    ) -> CheckpointObligation:
        """Compose a document and wrap it in an obligation for the external sink."""
        document = self.compose(
            session,
            tier,
            notes,
            is_emergency=is_emergency,
            require_notes=require_notes,
        )
        return CheckpointObligation(
            session_id=session.session_id,
            profile_id=session.profile_id,
            sequence=sequence,
            tier=document.tier,
            reason=reason,
            usage_at_trigger=document.usage_at_trigger,
            zone_at_trigger=document.zone_at_trigger,
            is_emergency=document.is_emergency,
            document=document,
        )


def _clean(items: tuple[str, ...]) -> tuple[str, ...]:
    """Trim entries and drop blanks while preserving order."""
    return tuple(stripped for item in items if (stripped := item.strip()))
