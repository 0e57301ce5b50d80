from __future__ import annotations

import json
import time
from pathlib import Path

import typer

from ._common import SOURCE_HELP, echo_json, fail, open_context

app = typer.Typer(name="channel", help="Channel operations")


@app.command("list")
def list_channels(
    source: str = typer.Option("local", "--source", help=SOURCE_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """List channels in the schedule.

    Examples:
        remoteviewer channel list
        remoteviewer channel list --source remote --json
    """
    context = open_context(source)
    try:
        channels = context.schedule_service().list_channels()
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json({"status": "ok", "source": context.source, "total": len(channels), "channels": channels})
        return
    if not channels:
        typer.echo("No channels found")
        return

    # Human output
    from rich.console import Console
    from rich.table import Table

    console = Console()
    table = Table(title=f"Channels ({context.source})")
    table.add_column("ID", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Type", style="magenta")
    table.add_column("Active", style="yellow")
    table.add_column("Items", justify="right")
    for channel in channels:
        table.add_row(
            channel["id"],
            channel.get("shortName") or "",
            channel["type"],
            "Yes" if channel["active"] else "No",
            str(channel["itemCount"]),
        )
    console.print(table)
    console.print(f"Total: {len(channels)} channels")


@app.command("now-playing")
def now_playing(
    channel_id: str = typer.Argument(..., help="Channel id"),
    at_ms: int | None = typer.Option(None, "--at-ms", help="Query instant in epoch milliseconds (default: now)"),
    source: str = typer.Option("local", "--source", help=SOURCE_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Show what a channel is playing at an instant.

    Examples:
        remoteviewer channel now-playing 1
        remoteviewer channel now-playing classics --at-ms 1700000000000 --json
    """
    context = open_context(source)
    instant = at_ms if at_ms is not None else int(time.time() * 1000)
    try:
        playing = context.schedule_service().now_playing(channel_id, instant)
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json({"status": "ok", "channel": channel_id, "atMs": instant, "nowPlaying": playing.to_dict()})
        return
    typer.echo(f"Channel {channel_id}:")
    typer.echo(f"  Title: {playing.title}")
    typer.echo(f"  File: {playing.rel_path}")
    typer.echo(f"  Position: {playing.start_offset_seconds}s of {playing.duration_seconds}s")
    typer.echo(f"  Ends at: {playing.ends_at}")


@app.command("health")
def health(
    source: str = typer.Option("local", "--source", help=SOURCE_HELP),
    verify: bool = typer.Option(True, "--verify/--no-verify", help="Re-check missing remote files over HTTP"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Check that every file referenced by a channel exists in the media library."""
    context = open_context(source)
    try:
        report = context.health_check(verify_missing=verify)
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json({"status": "ok", **report.to_dict()})
        return
    from rich.console import Console
    from rich.table import Table

    console = Console()
    console.print(f"[bold]Health check[/bold] ({report.source}) at {report.checked_at}")
    table = Table(title="Issues")
    table.add_column("Channel", style="cyan")
    table.add_column("Healthy", justify="right")
    table.add_column("Issue", style="red")
    table.add_column("File", style="green")
    table.add_column("Details")
    for channel in report.channels:
        healthy = f"{channel.healthy_items}/{channel.total_items}"
        if not channel.issues:
            table.add_row(channel.channel_id, healthy, "", "", "")
        for issue in channel.issues:
            table.add_row(channel.channel_id, healthy, issue.issue, issue.file, issue.details)
    console.print(table)
    console.print(f"Total: {len(report.channels)} channels, {report.total_issues} issues")


@app.command("create")
def create_channel(
    channel_id: str = typer.Argument(..., help="Channel id (normalized to [A-Za-z0-9_-])"),
    short_name: str | None = typer.Option(None, "--short-name", help="Display name"),
    schedule_type: str = typer.Option("24hour", "--type", help="Schedule type: 24hour or looping"),
    source: str = typer.Option("local", "--source", help=SOURCE_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Create an empty channel."""
    if schedule_type not in ("24hour", "looping"):
        fail(ValueError(f"Invalid type '{schedule_type}'. Use 24hour or looping"), json_output, code="VALIDATION_ERROR")
    context = open_context(source)
    try:
        channel = context.schedule_service().create_channel(
            channel_id, short_name=short_name, schedule_type=schedule_type  # type: ignore[arg-type]
        )
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json({"status": "ok", "channelId": channel_id, "channel": channel.to_document()})
    else:
        typer.echo(f"Channel created: {channel_id} ({channel.type})")


@app.command("delete")
def delete_channel(
    channel_id: str = typer.Argument(..., help="Channel id"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    source: str = typer.Option("local", "--source", help=SOURCE_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Delete a channel and its schedule."""
    if not yes and not json_output:
        typer.confirm(f"Delete channel '{channel_id}'?", abort=True)
    context = open_context(source)
    try:
        context.schedule_service().delete_channel(channel_id)
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json({"status": "ok", "deleted": channel_id})
    else:
        typer.echo(f"Channel deleted: {channel_id}")


@app.command("set")
def set_channel(
    channel_id: str = typer.Argument(..., help="Channel id"),
    schedule_file: Path | None = typer.Option(
        None, "--schedule-file", help="JSON file with the channel schedule (type, slots or playlist)"
    ),
    short_name: str | None = typer.Option(None, "--short-name", help="Display name"),
    active: bool | None = typer.Option(None, "--active/--inactive", help="Channel active status"),
    epoch_offset_hours: float | None = typer.Option(
        None, "--epoch-offset-hours", help="Shift the loop start of a looping channel"
    ),
    source: str = typer.Option("local", "--source", help=SOURCE_HELP),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Replace a channel's schedule and/or change its metadata.

    Examples:
        remoteviewer channel set 1 --schedule-file channel1.json
        remoteviewer channel set classics --short-name "Classics" --inactive
    """
    if schedule_file is None and short_name is None and active is None and epoch_offset_hours is None:
        fail(ValueError("Nothing to change"), json_output, code="VALIDATION_ERROR")

    context = open_context(source)
    channel = None
    try:
        service = context.schedule_service()
        if schedule_file is not None:
            payload = json.loads(schedule_file.read_text(encoding="utf-8"))
            channel = service.save_channel_schedule(channel_id, payload)
        if short_name is not None or active is not None or epoch_offset_hours is not None:
            channel = service.update_channel(
                channel_id,
                short_name=short_name,
                active=active,
                epoch_offset_hours=epoch_offset_hours,
            )
    except (OSError, json.JSONDecodeError) as e:
        fail(e, json_output, code="INVALID_INPUT")
    except Exception as e:
        fail(e, json_output)

    assert channel is not None
    if json_output:
        echo_json({"status": "ok", "channelId": channel_id, "channel": channel.to_document()})
    else:
        typer.echo(f"Channel updated: {channel_id} ({channel.type}, active={channel.active})")
