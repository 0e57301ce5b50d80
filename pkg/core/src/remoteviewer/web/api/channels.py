"""
Channel maintenance API: schedule repair and channel health.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from ...infra.exceptions import CorruptedStateError, NotFoundError, RemoteViewerError
from .deps import source_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/channels", tags=["channels"])


def _configured_remote(request: Request):
    context = request.app.state.contexts["remote"]
    if not context.settings.is_remote_configured():
        return None
    return context


@router.get("/repair")
def repair_status(request: Request):
    """Read-only status of the remote schedule document."""
    context = _configured_remote(request)
    if context is None:
        return JSONResponse(status_code=400, content={"error": "FTP not configured"})
    try:
        report = context.schedule_service().check_status()
    except RemoteViewerError as e:
        return JSONResponse(status_code=500, content={"status": "error", "message": str(e)})
    return report.to_dict()


@router.post("/repair")
def repair_schedule(request: Request):
    """Back up and repair a corrupted remote schedule document."""
    context = _configured_remote(request)
    if context is None:
        return JSONResponse(status_code=400, content={"error": "FTP not configured"})
    try:
        report = context.schedule_service().repair()
    except NotFoundError as e:
        return JSONResponse(status_code=404, content={"success": False, "error": str(e)})
    except CorruptedStateError as e:
        logger.error("Repair failed: %s", e)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": "Could not repair schedule - manual intervention required", "details": str(e)},
        )
    except RemoteViewerError as e:
        logger.error("Repair failed: %s", e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    message = (
        f"Repaired schedule.json - recovered {report.recovered_entry_count} channels"
        if report.was_corrupted
        else f"Schedule is valid - {report.recovered_entry_count} channels found"
    )
    return {"success": True, "message": message, **report.to_dict()}


@router.post("/health")
def channel_health(
    request: Request,
    source: str = Query(default="local", description="local or remote"),
):
    """Check every channel's files against the media library."""
    context = source_context(request, source)
    try:
        report = context.health_check()
    except RemoteViewerError as e:
        logger.error("Health check failed (%s): %s", source, e)
        return JSONResponse(status_code=500, content={"error": str(e), "kind": e.kind})
    return report.to_dict()
