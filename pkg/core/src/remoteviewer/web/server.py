"""
Web server for remote-viewer.

The app holds one SourceContext per media source for its whole lifetime, so
every request touching the same document shares one lock table.
"""

from __future__ import annotations

import logging

import uvicorn
from fastapi import FastAPI

from ..infra.logging import configure_logging
from ..infra.settings import Settings, settings as default_settings
from ..usecases.sources import SOURCES, SourceContext
from .api import channels, media_index, now_playing

logger = logging.getLogger(__name__)


def create_app(
    cfg: Settings | None = None,
    contexts: dict[str, SourceContext] | None = None,
) -> FastAPI:
    cfg = cfg or default_settings
    app = FastAPI(title="remote-viewer")
    app.state.settings = cfg
    app.state.contexts = contexts or {source: SourceContext(source, cfg) for source in SOURCES}

    app.include_router(now_playing.router)
    app.include_router(channels.router)
    app.include_router(media_index.router)

    @app.get("/healthz")
    def healthz():
        return {"status": "ok", "remoteConfigured": cfg.is_remote_configured()}

    return app


def run_server(host: str = "0.0.0.0", port: int = 8000) -> None:
    configure_logging()
    logger.info("Starting remote-viewer API on %s:%d", host, port)
    uvicorn.run(create_app(), host=host, port=port)
