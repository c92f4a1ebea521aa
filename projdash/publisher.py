"""Hand-off point between the scanner and its consumers.

The publisher holds the last completed project collection, pushes every
new collection to subscribers, and serializes watcher-triggered rescans
so that a burst arriving mid-scan queues exactly one follow-up cycle.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from projdash.date_utils import iso_to_epoch, utc_now_iso
from projdash.models import CodeStats, Project, TimelineEntry
from projdash.services.code_stats import CodeStatsCache
from projdash.services.scanner import ProjectScanner, sort_by_activity

logger = logging.getLogger("projdash.publisher")

Subscriber = Callable[[list[Project]], Union[Awaitable[Any], Any]]


def build_timeline_entries(projects: Iterable[Project]) -> list[TimelineEntry]:
    """Flatten commits and live agent status across projects, newest first."""
    entries: list[TimelineEntry] = []
    for project in projects:
        for commit in project.recentCommits:
            entries.append(TimelineEntry(
                id=f"{project.path}-{commit.hash or commit.date}",
                type="commit",
                project=project.name,
                projectPath=project.path,
                message=commit.message,
                date=commit.date,
                metadata={"hash": commit.hash, "author": commit.author},
            ))

        live = project.liveStatus
        if live is not None and live.status != "idle":
            entries.append(TimelineEntry(
                id=f"{project.path}-claude-{live.updatedAt or 'now'}",
                type="claude_session",
                project=project.name,
                projectPath=project.path,
                message=live.message or f"Claude {live.status}",
                date=live.updatedAt,
                metadata={"status": live.status, "task": live.task},
            ))

    entries.sort(key=lambda e: iso_to_epoch(e.date), reverse=True)
    return entries


class ProjectPublisher:
    def __init__(self, scanner: ProjectScanner, code_stats: Optional[CodeStatsCache] = None):
        self.scanner = scanner
        self.code_stats = code_stats or CodeStatsCache()
        self.projects: list[Project] = []
        self.last_updated: str = ""
        self.has_scanned = False
        self._subscribers: list[Subscriber] = []
        self._queued_paths: set[Path] = set()
        self._full_rescan_queued = False
        self._worker: Optional[asyncio.Task] = None

    # ── push ──────────────────────────────────────────────────────

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def publish(self, projects: list[Project]) -> None:
        """Replace the held collection and notify every subscriber."""
        self.projects = projects
        self.last_updated = utc_now_iso()
        self.has_scanned = True
        for callback in list(self._subscribers):
            try:
                result = callback(projects)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"Subscriber {callback!r} failed: {e}")

    # ── pull ──────────────────────────────────────────────────────

    async def refresh(self) -> list[Project]:
        """Run a full scan cycle now and publish its result."""
        projects = await self.scanner.scan_all()
        await self.publish(projects)
        return projects

    # ── watcher entry point ───────────────────────────────────────

    def request_rescan(self, paths: Optional[Iterable[Path]] = None) -> asyncio.Task:
        """Queue a rescan of ``paths`` (or of everything when None).

        Returns the worker task draining the queue; if a cycle is already
        running the request is picked up by the next cycle.
        """
        if paths is None:
            self._full_rescan_queued = True
        else:
            self._queued_paths.update(Path(p) for p in paths)

        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain())
        return self._worker

    def on_watch_changes(self, paths: set[Path]) -> None:
        """Callback for the change watcher."""
        logger.info(f"Changes detected in {len(paths)} projects, rescanning")
        self.request_rescan(paths)

    async def wait_idle(self) -> None:
        """Wait until every queued rescan has completed."""
        while self._worker is not None and not self._worker.done():
            await asyncio.shield(self._worker)

    async def stop(self) -> None:
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        self._worker = None

    async def _drain(self) -> None:
        while self._full_rescan_queued or self._queued_paths:
            full = self._full_rescan_queued or not self.has_scanned
            paths = set(self._queued_paths)
            self._full_rescan_queued = False
            self._queued_paths.clear()
            try:
                if full:
                    await self.refresh()
                else:
                    await self._refresh_paths(paths)
            except Exception as e:
                logger.error(f"Rescan failed: {e}")

    async def _refresh_paths(self, paths: set[Path]) -> list[Project]:
        rescanned = await self.scanner.scan_paths(paths)
        kept = [p for p in self.projects if p.path not in rescanned]
        for path, project in rescanned.items():
            if project is None:
                continue
            previous = next((p for p in self.projects if p.path == path), None)
            if previous is not None and previous.codeStats is not None:
                project.codeStats = previous.codeStats
            kept.append(project)
        projects = sort_by_activity(kept)
        await self.publish(projects)
        return projects

    # ── derived views ─────────────────────────────────────────────

    def get_project(self, path: str) -> Optional[Project]:
        return next((p for p in self.projects if p.path == path), None)

    async def get_code_stats(self, path: str, *, force: bool = False) -> CodeStats:
        """Code statistics for a held project; raises KeyError for unknown paths."""
        project = self.get_project(path)
        if project is None:
            raise KeyError(path)
        if force:
            self.code_stats.invalidate(path)
        stats = await self.code_stats.get_or_compute(path)
        project.codeStats = stats
        return stats

    def timeline(self, limit: Optional[int] = None) -> list[TimelineEntry]:
        entries = build_timeline_entries(self.projects)
        return entries[:limit] if limit else entries
