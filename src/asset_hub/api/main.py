"""FastAPI application entry point for the Asset Hub API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from asset_hub.api.routes import builds, health, launcher, projects, uploads

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize the database and storage on startup and stop the reaper on shutdown."""
    from asset_hub.config import load_settings
    from asset_hub.data.db import init_db
    from asset_hub.services.projects import committed_build_dirs
    from asset_hub.services.storage import StorageContext

    init_db()
    settings = load_settings()
    storage = StorageContext(settings, committed_dirs=committed_build_dirs)
    logger.info("Storage root: %s", storage.root)

    try:
        storage.reaper.sweep()
    except Exception:
        logger.exception("Startup sweep of temporary storage failed")
    if settings.reaper_enabled:
        storage.reaper.start()

    app.state.storage = storage
    try:
        yield
    finally:
        storage.reaper.stop()
        app.state.storage = None


app = FastAPI(
    title="Asset Hub API",
    description="API for uploading project models and builds and launching builds",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["Content-Range", "Accept-Ranges", "Content-Length"],
)

app.include_router(health.router)
app.include_router(uploads.router, prefix="/api")
app.include_router(launcher.router, prefix="/api")
app.include_router(builds.router, prefix="/api")
app.include_router(projects.router, prefix="/api")


def main() -> None:
    """Start the development server."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(
        "asset_hub.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )


if __name__ == "__main__":
    main()
