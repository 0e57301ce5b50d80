"""
Media index API.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ...infra.exceptions import NotConfiguredError, RemoteViewerError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/media-index", tags=["media-index"])


@router.post("/scan-remote")
def scan_remote(request: Request):
    """Probe new and changed remote media files and rewrite media-index.json."""
    context = request.app.state.contexts["remote"]
    try:
        report = context.scan_media()
    except NotConfiguredError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": str(e)})
    except RemoteViewerError as e:
        logger.error("Remote scan failed: %s", e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e), "kind": e.kind})
    return {"success": True, "message": f"Media index updated with {len(report.items)} files", **report.to_dict()}
