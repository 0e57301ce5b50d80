from __future__ import annotations

import typer

from ._common import SOURCE_HELP, echo_json, fail, open_context

app = typer.Typer(name="media", help="Media library operations")


@app.command("scan")
def scan(
    source: str = typer.Option("remote", "--source", help=SOURCE_HELP),
    show_failures: bool = typer.Option(True, "--failures/--no-failures", help="List files that failed to probe"),
    json_output: bool = typer.Option(False, "--json", help="Output in JSON format"),
):
    """Probe new and changed media files and rewrite media-index.json.

    Unchanged files keep their cached duration; files whose probe failed
    recently are skipped until the cooldown passes.
    """
    context = open_context(source)
    try:
        report = context.scan_media()
    except Exception as e:
        fail(e, json_output)

    if json_output:
        echo_json({"success": True, **report.to_dict()})
        return
    stats = report.stats
    typer.echo(f"Media index written: {report.location}")
    typer.echo(f"  Files: {stats.total}")
    typer.echo(f"  Unchanged: {stats.unchanged}")
    typer.echo(f"  Probed: {stats.probed} ({stats.succeeded} ok, {stats.failed} failed)")
    typer.echo(f"  Skipped by cooldown: {stats.skipped_by_cooldown}")
    if show_failures:
        for result in report.failures():
            if not result.skipped_by_cooldown:
                typer.echo(f"    ✗ {result.rel_path}: {result.error}")
