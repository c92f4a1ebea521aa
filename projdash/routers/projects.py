"""API router for the aggregated project collection."""
from __future__ import annotations

import asyncio
import json
import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from projdash.models import CodeStats, Project, TimelineEntry

logger = logging.getLogger("projdash.api")

projects_router = APIRouter(prefix="/api/projects", tags=["projects"])
timeline_router = APIRouter(prefix="/api/timeline", tags=["timeline"])

STREAM_KEEPALIVE_SECONDS = 15.0


def _get_publisher(request: Request):
    publisher = getattr(request.app.state, "publisher", None)
    if not publisher:
        raise HTTPException(status_code=503, detail="Project publisher not initialized")
    return publisher


def _sse_event(event: str, projects: list[Project]) -> str:
    payload = json.dumps([p.model_dump(mode="json") for p in projects])
    return f"event: {event}\ndata: {payload}\n\n"


@projects_router.get("", response_model=list[Project])
def list_projects(request: Request):
    """Return the last published project collection."""
    return _get_publisher(request).projects


@projects_router.post("/refresh", response_model=list[Project])
async def refresh_projects(request: Request):
    """Run a scan cycle now and return its result."""
    publisher = _get_publisher(request)
    return await publisher.refresh()


@projects_router.get("/code-stats", response_model=CodeStats)
async def get_code_stats(
    request: Request,
    path: str = Query(..., min_length=1, description="Absolute project path"),
    force: bool = Query(False, description="Ignore the cached value"),
):
    """Line counts per language for one tracked project."""
    publisher = _get_publisher(request)
    try:
        return await publisher.get_code_stats(path, force=force)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Project {path} not found")


@projects_router.get("/stream")
async def stream_projects(request: Request):
    """Server-sent events: the current collection, then one event per scan cycle."""
    publisher = _get_publisher(request)
    queue: asyncio.Queue[list[Project]] = asyncio.Queue(maxsize=1)

    def _enqueue(projects: list[Project]) -> None:
        # Slow consumers only ever need the newest collection.
        if queue.full():
            queue.get_nowait()
        queue.put_nowait(projects)

    async def _events():
        publisher.subscribe(_enqueue)
        try:
            yield _sse_event("projects", publisher.projects)
            while True:
                if await request.is_disconnected():
                    break
                try:
                    projects = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                yield _sse_event("projects", projects)
        finally:
            publisher.unsubscribe(_enqueue)

    return StreamingResponse(_events(), media_type="text/event-stream")


@timeline_router.get("", response_model=list[TimelineEntry])
def get_timeline(request: Request, limit: int = Query(100, ge=1, le=1000)):
    """Commits and agent activity across all projects, newest first."""
    return _get_publisher(request).timeline(limit=limit)
