"""
Shared plumbing for command groups: source selection and error output.

Commands print ``{"status": "error", "code": ..., "message": ...}`` with
``--json`` and ``Error: ...`` on stderr otherwise, then exit with status 1.
The code is the exception's ``kind`` upper-cased.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn

import typer

from ...infra.exceptions import RemoteViewerError
from ...usecases.sources import SourceContext, parse_source

SOURCE_HELP = "Media source: local or remote"

# Per-process contexts so repeated invocations in one process share lock tables
_contexts: dict[str, SourceContext] = {}


def open_context(source: str) -> SourceContext:
    try:
        parsed = parse_source(source)
    except ValueError as e:
        fail(e, False, code="INVALID_SOURCE")
    context = _contexts.get(parsed)
    if context is None:
        context = SourceContext(parsed)
        _contexts[parsed] = context
    return context


def reset_contexts() -> None:
    _contexts.clear()


def echo_json(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2))


def fail(error: Exception, json_output: bool, *, code: str | None = None) -> NoReturn:
    if code is None:
        code = error.kind.upper() if isinstance(error, RemoteViewerError) else "UNKNOWN_ERROR"
    if json_output:
        echo_json({"status": "error", "code": code, "message": str(error)})
    else:
        typer.echo(f"Error: {error}", err=True)
    raise typer.Exit(1)
