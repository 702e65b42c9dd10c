"""Typer CLI for inspecting profiles and replaying budget sessions."""

from __future__ import annotations

import json
from enum import StrEnum
from pathlib import Path
from typing import Annotated

import typer
from pydantic import ValidationError

from budget_checkpoint.catalog import DEFAULT_PROFILE_ID, ProfileCatalog
from budget_checkpoint.config import load_settings
from budget_checkpoint.controller import SessionController
from budget_checkpoint.errors import BudgetCheckpointError, InvalidProfile, UsageOverflow
from budget_checkpoint.observability import configure_logging
from budget_checkpoint.schema import CheckpointObligation, ProgressNotes
from budget_checkpoint.sinks import CheckpointSink, JsonDirectorySink, build_sink

app = typer.Typer(help="Resource budget monitoring and checkpoint scheduling.")


class Finish(StrEnum):
    """How a simulated session ends."""

    NONE = "none"
    COMPLETE = "complete"
    HANDOFF = "handoff"


def _load_catalog(profiles_file: Path | None) -> ProfileCatalog:
    if profiles_file is not None:
        return ProfileCatalog.from_json_file(profiles_file)
    return load_settings().load_catalog()


def _load_notes(notes_file: Path | None) -> ProgressNotes | None:
    if notes_file is None:
        return None
    try:
        return ProgressNotes.model_validate_json(notes_file.read_text(encoding="utf-8"))
    except ValidationError as error:
        raise typer.BadParameter(f"Invalid notes file '{notes_file}': {error}") from error


def _describe(obligation: CheckpointObligation) -> str:
    marker = " [emergency]" if obligation.is_emergency else ""
    return f"{obligation.tier}{marker}"


@app.command("profiles")
def profiles_command(
    profiles_file: Annotated[
        Path | None, typer.Option(help="JSON profile file. Defaults to configured profiles.")
    ] = None,
) -> None:
    """List profiles with their ceilings and tier thresholds."""
    try:
        catalog = _load_catalog(profiles_file)
    except InvalidProfile as error:
        typer.echo(f"Profile load failed: {error}")
        raise typer.Exit(code=1) from error

    for profile in catalog:
        tiers = ", ".join(
            f"{tier.name}@{profile.tier_units(tier)} ({tier.kind})" for tier in profile.tiers
        )
        typer.echo(
            f"{profile.profile_id}: max={profile.max_budget} "
            f"warning>={profile.warning_units} critical>={profile.critical_units} tiers: {tiers}"
        )


@app.command("validate-profiles")
def validate_profiles_command(
    path: Annotated[Path, typer.Argument(help="JSON profile file to validate.")],
) -> None:
    """Validate a profile file without starting any session."""
    try:
        catalog = ProfileCatalog.from_json_file(path)
    except InvalidProfile as error:
        typer.echo(f"Profile validation failed: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(f"{len(catalog)} profile(s) valid: {', '.join(catalog.ids())}.")


@app.command("simulate")
def simulate_command(
    delta: Annotated[
        list[int], typer.Option(help="Usage delta to report; repeat for a sequence.")
    ],
    profile: Annotated[str, typer.Option(help="Profile id.")] = DEFAULT_PROFILE_ID,
    session_id: Annotated[str, typer.Option(help="Session id.")] = "simulated",
    profiles_file: Annotated[
        Path | None, typer.Option(help="JSON profile file. Defaults to configured profiles.")
    ] = None,
    notes_file: Annotated[
        Path | None, typer.Option(help="JSON progress notes used for every checkpoint.")
    ] = None,
    sink_dir: Annotated[
        Path | None, typer.Option(help="Write obligations as JSON files to this directory.")
    ] = None,
    finish: Annotated[Finish, typer.Option(help="End the session after replay.")] = Finish.NONE,
    log_level: Annotated[str | None, typer.Option(help="Logging level override.")] = None,
    as_json: Annotated[
        bool, typer.Option("--json/--no-json", help="Print obligations as JSON lines.")
    ] = False,
) -> None:
    """Replay usage deltas for one session and print the checkpoints they trigger."""
    settings = load_settings()
    configure_logging(log_level or settings.log_level)
    notes = _load_notes(notes_file)
    sink: CheckpointSink | None = JsonDirectorySink(sink_dir) if sink_dir else build_sink(settings)

    try:
        catalog = _load_catalog(profiles_file)
        controller = SessionController(session_id, profile, catalog, sink=sink)
        for step, units in enumerate(delta, start=1):
            obligations = controller.report_usage(units, notes)
            _echo_step(controller, step, units, obligations, as_json=as_json)
        if finish is Finish.COMPLETE:
            _echo_obligation(controller.complete(notes), as_json=as_json)
        elif finish is Finish.HANDOFF:
            _echo_obligation(controller.hand_off(notes), as_json=as_json)
    except UsageOverflow as error:
        if error.obligation is not None:
            _echo_obligation(error.obligation, as_json=as_json)
        typer.echo(f"Simulation failed: {error}")
        raise typer.Exit(code=1) from error
    except BudgetCheckpointError as error:
        typer.echo(f"Simulation failed: {error}")
        raise typer.Exit(code=1) from error

    if controller.undelivered:
        typer.echo(f"{len(controller.undelivered)} checkpoint(s) were not delivered.")
        raise typer.Exit(code=2)
    typer.echo(json.dumps(controller.snapshot(), sort_keys=True))


def _echo_step(
    controller: SessionController,
    step: int,
    units: int,
    obligations: list[CheckpointObligation],
    *,
    as_json: bool,
) -> None:
    session = controller.session
    fired = ", ".join(_describe(obligation) for obligation in obligations) or "-"
    typer.echo(
        f"#{step} +{units} usage={session.cumulative_usage} zone={session.zone} "
        f"checkpoints={fired}"
    )
    if as_json:
        for obligation in obligations:
            typer.echo(json.dumps(obligation.to_payload(), sort_keys=True))


def _echo_obligation(obligation: CheckpointObligation, *, as_json: bool) -> None:
    typer.echo(f"{obligation.reason}: {_describe(obligation)} at {obligation.usage_at_trigger}")
    if as_json:
        typer.echo(json.dumps(obligation.to_payload(), sort_keys=True))
