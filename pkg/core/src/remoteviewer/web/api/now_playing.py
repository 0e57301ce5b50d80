"""
Now-playing API.

Resolves what a channel is playing at request time from the stored schedule
and media index.
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse

from ...infra.exceptions import NotConfiguredError, NotFoundError, ScheduleInvalidError
from .deps import source_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["now-playing"])


@router.get("/now-playing")
def get_now_playing(
    request: Request,
    channel: str | None = Query(default=None, description="Channel id (default: first active channel)"),
    source: str = Query(default="local", description="local or remote"),
    at: int | None = Query(default=None, description="Query instant in epoch ms (default: now)"),
):
    """Return the item playing on a channel plus the server clock."""
    context = source_context(request, source)
    at_ms = at if at is not None else int(time.time() * 1000)
    try:
        playing = context.schedule_service().now_playing(channel, at_ms)
    except (ScheduleInvalidError, NotFoundError) as e:
        logger.warning("now-playing failed for channel %s (%s): %s", channel or "default", source, e)
        return JSONResponse(status_code=404, content={"error": str(e), "kind": e.kind})
    except NotConfiguredError as e:
        return JSONResponse(status_code=400, content={"error": str(e), "kind": e.kind})
    except Exception as e:
        logger.error("now-playing failed for channel %s (%s): %s", channel or "default", source, e, exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})

    server_time_ms = int(time.time() * 1000)
    logger.info(
        "now-playing resolved channel=%s source=%s relPath=%s offset=%s",
        channel or "default",
        source,
        playing.rel_path,
        playing.start_offset_seconds,
    )
    return {**playing.to_dict(), "serverTimeMs": server_time_ms}
