"""
Main CLI application using Typer with router-based command dispatch.

All command groups are registered through the centralized CliRouter,
ensuring explicit registration and documentation mapping.
"""

from __future__ import annotations

import typer

from ..infra.logging import configure_logging
from .commands import channel, media, schedule
from .router import get_router

app = typer.Typer(help="remote-viewer operator CLI")

router = get_router(app)

router.register(
    "channel",
    channel.app,
    help_text="Channel listing, editing and now-playing operations",
    doc_path="channel.md",
)

router.register(
    "schedule",
    schedule.app,
    help_text="Schedule document status, repair and reset",
    doc_path="schedule.md",
)

router.register(
    "media",
    media.app,
    help_text="Media library scan operations",
    doc_path="media.md",
)


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address"),
    port: int = typer.Option(8000, "--port", help="HTTP port"),
):
    """Run the HTTP API."""
    from ..web.server import run_server

    run_server(host=host, port=port)


@app.callback()
def main(
    ctx: typer.Context,
    log_level: str = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
):
    """remote-viewer - scheduled and looping channels over a remote media library."""
    configure_logging(log_level)
    ctx.ensure_object(dict)


def cli():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    cli()
