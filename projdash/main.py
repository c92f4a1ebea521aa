"""projdash FastAPI backend: application entry point."""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from projdash import config
from projdash.observability import initialize as initialize_observability, shutdown as shutdown_observability
from projdash.publisher import ProjectPublisher
from projdash.routers.projects import projects_router, timeline_router
from projdash.services.code_stats import CodeStatsCache
from projdash.services.scanner import ProjectScanner
from projdash.watcher import ChangeWatcher

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("projdash")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info(f"projdash backend starting up (root={config.PROJECTS_DIR})")
    initialize_observability(app)

    # 1. Scanner + publisher
    scanner = ProjectScanner(config.PROJECTS_DIR)
    publisher = ProjectPublisher(scanner, CodeStatsCache())
    app.state.publisher = publisher

    # 2. Initial scan (background task) so startup is not blocked on git
    app.state.scan_task = asyncio.create_task(publisher.refresh())

    # 3. File watcher feeding debounced rescans
    watcher = None
    if config.WATCH_ENABLED:
        watcher = ChangeWatcher(config.PROJECTS_DIR, publisher.on_watch_changes)
        await watcher.start()
    app.state.watcher = watcher

    yield

    logger.info("projdash backend shutting down")

    if watcher is not None:
        await watcher.stop()

    app.state.scan_task.cancel()
    try:
        await app.state.scan_task
    except asyncio.CancelledError:
        pass

    await publisher.stop()
    shutdown_observability(app)


app = FastAPI(
    title="projdash API",
    description="Live aggregated state of local software projects",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS: allow the UI dev server
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(projects_router)
app.include_router(timeline_router)


@app.get("/api/health")
def health(request: Request):
    """Health check endpoint."""
    publisher = getattr(request.app.state, "publisher", None)
    watcher = getattr(request.app.state, "watcher", None)
    return {
        "status": "ok",
        "root": str(config.PROJECTS_DIR),
        "projects": len(publisher.projects) if publisher else 0,
        "lastUpdated": publisher.last_updated if publisher else "",
        "watcher": "running" if watcher and watcher.is_running else "stopped",
    }
