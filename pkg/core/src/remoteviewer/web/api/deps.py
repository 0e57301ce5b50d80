"""
Request-scoped access to the per-source contexts held by the app.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from ...usecases.sources import SourceContext, parse_source


def source_context(request: Request, source: str | None) -> SourceContext:
    try:
        parsed = parse_source(source)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    return request.app.state.contexts[parsed]
