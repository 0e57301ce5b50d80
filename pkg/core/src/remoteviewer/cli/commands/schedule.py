from __future__ import annotations

import typer

from ._common import SOURCE_HELP, echo_json, fail, open_context

app = typer.Typer(name="schedule", help="Schedule document integrity operations")


@app.command("status")
def status(
    source: str = typer.Option("remote", "--source", help=SOURCE_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Report whether the schedule document parses (read-only)."""
    context = open_context(source)
    try:
        report = context.schedule_service().check_status()
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json(report.to_dict())
    else:
        typer.echo(f"[{report.status}] {report.message}")
    if report.status in ("corrupted", "error"):
        raise typer.Exit(1)


@app.command("repair")
def repair(
    source: str = typer.Option("remote", "--source", help=SOURCE_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Repair a corrupted schedule document.

    The original bytes are backed up to schedule.backup.<epoch-ms>.json
    before the recovered document is written back. A valid document is
    left untouched.
    """
    context = open_context(source)
    try:
        report = context.schedule_service().repair()
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json({"success": True, **report.to_dict()})
        return
    if not report.was_corrupted:
        typer.echo(f"Schedule is valid - {report.recovered_entry_count} channels found")
        return
    typer.echo(f"Repaired schedule using {report.strategy}")
    typer.echo(f"  Recovered channels: {report.recovered_entry_count}")
    if report.entries:
        typer.echo(f"  Channels: {', '.join(report.entries)}")
    typer.echo(f"  Backup: {report.backup_location}")


@app.command("reset")
def reset(
    yes: bool = typer.Option(False, "--yes", "-y", help="Confirm replacing the schedule with an empty one"),
    source: str = typer.Option("remote", "--source", help=SOURCE_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Replace the schedule with {"channels": {}}. Requires --yes."""
    if not yes:
        fail(ValueError("Refusing to reset the schedule without --yes"), json_output, code="CONFIRMATION_REQUIRED")
    context = open_context(source)
    try:
        location = context.schedule_service().reset()
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json({"status": "ok", "location": location})
    else:
        typer.echo(f"Schedule reset: {location}")
