"""Project scan orchestration.

`ProjectScanner.scan_project` builds one `Project` from git state plus the
auxiliary task files; `scan_all` does that for every project under the
root concurrently and returns the collection ordered by last activity.
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Iterable, Optional

from projdash import config
from projdash.date_utils import iso_to_epoch, utc_now_iso
from projdash.models import Project
from projdash.observability import record_scan, start_span
from projdash.parsers.session_status import load_live_statuses, to_live_status
from projdash.services.task_sources import merge_task_sources, read_task_sources
from projdash.services.vcs import GitInspector

logger = logging.getLogger("projdash.scanner")


def sort_by_activity(projects: Iterable[Project]) -> list[Project]:
    return sorted(projects, key=lambda p: iso_to_epoch(p.lastActivity), reverse=True)


class ProjectScanner:
    def __init__(
        self,
        root: Path,
        inspector: Optional[GitInspector] = None,
        *,
        category_folders: Iterable[str] = config.CATEGORY_FOLDERS,
        live_status_file: Optional[Path] = config.LIVE_STATUS_FILE,
    ):
        self.root = Path(root).expanduser().absolute()
        self.inspector = inspector or GitInspector()
        self.category_folders = frozenset(category_folders)
        self.live_status_file = live_status_file

    def discover(self) -> list[tuple[Path, Optional[str]]]:
        """Return (project_dir, category) for every candidate under the root.

        Raises OSError when the root itself cannot be listed.
        """
        candidates: list[tuple[Path, Optional[str]]] = []
        for name, path in self._subdirectories(self.root):
            if name in self.category_folders:
                try:
                    nested = self._subdirectories(path)
                except OSError as e:
                    logger.warning(f"Cannot list category folder {path}: {e}")
                    continue
                candidates.extend((child, name) for _, child in nested)
            else:
                candidates.append((path, None))
        return candidates

    @staticmethod
    def _subdirectories(directory: Path) -> list[tuple[str, Path]]:
        entries: list[tuple[str, Path]] = []
        with os.scandir(directory) as it:
            for entry in it:
                if entry.name.startswith("."):
                    continue
                try:
                    if entry.is_dir():
                        entries.append((entry.name, Path(entry.path).absolute()))
                except OSError:
                    continue
        entries.sort()
        return entries

    def category_for(self, project_dir: Path) -> Optional[str]:
        try:
            parent = project_dir.parent.relative_to(self.root)
        except ValueError:
            return None
        name = parent.as_posix()
        return name if name in self.category_folders else None

    async def scan_all(self) -> list[Project]:
        """Scan every project under the root. Never raises."""
        started = time.perf_counter()
        with start_span("projdash.scan_all", {"root": str(self.root)}):
            try:
                candidates = await asyncio.to_thread(self.discover)
            except OSError as e:
                logger.error(f"Cannot read projects root {self.root}: {e}")
                record_scan("full", "error", (time.perf_counter() - started) * 1000)
                return []

            live = await self._load_live_statuses()
            results = await asyncio.gather(
                *(self._scan_guarded(path, category, live) for path, category in candidates)
            )
            projects = sort_by_activity(p for p in results if p is not None)

        duration_ms = (time.perf_counter() - started) * 1000
        record_scan("full", "ok", duration_ms, project_count=len(projects))
        logger.info(f"Scanned {len(candidates)} directories, {len(projects)} projects ({duration_ms:.0f}ms)")
        return projects

    async def scan_paths(self, paths: Iterable[Path]) -> dict[str, Optional[Project]]:
        """Rescan specific project directories.

        Maps each absolute path to its new Project, or None when the directory
        is gone or no longer a repository.
        """
        started = time.perf_counter()
        unique = sorted({Path(p).absolute() for p in paths})
        live = await self._load_live_statuses()

        async def _one(path: Path) -> Optional[Project]:
            if not path.is_dir():
                return None
            return await self._scan_guarded(path, self.category_for(path), live)

        with start_span("projdash.scan_paths", {"count": len(unique)}):
            results = await asyncio.gather(*(_one(path) for path in unique))

        record_scan("partial", "ok", (time.perf_counter() - started) * 1000, project_count=len(unique))
        return {str(path): project for path, project in zip(unique, results)}

    async def scan_project(
        self,
        path: Path,
        category: Optional[str] = None,
        live_statuses: Optional[dict[str, dict]] = None,
    ) -> Optional[Project]:
        """Build the Project for ``path``; None when it is not a repository."""
        path = Path(path).absolute()
        repo = await self.inspector.inspect(path)
        if repo is None:
            return None

        sources = await read_task_sources(path)
        fields = merge_task_sources(sources)
        if live_statuses is None:
            live_statuses = await self._load_live_statuses()

        last_commit = repo.recent_commits[0] if repo.recent_commits else None
        return Project(
            name=path.name,
            path=str(path),
            category=category,
            branch=repo.git_info.currentBranch,
            uncommittedChanges=len(repo.changed_files),
            changedFiles=repo.changed_files,
            lastCommit=last_commit,
            recentCommits=repo.recent_commits,
            lastActivity=(last_commit.date if last_commit and last_commit.date else utc_now_iso()),
            summary=fields.summary,
            completedTasks=fields.completed_tasks,
            remainingTasks=fields.remaining_tasks,
            nextSteps=fields.next_steps,
            knownIssues=fields.known_issues,
            techStack=fields.tech_stack,
            currentStatus=fields.current_status,
            liveStatus=to_live_status(live_statuses.get(str(path))),
            gitInfo=repo.git_info,
        )

    async def _scan_guarded(
        self,
        path: Path,
        category: Optional[str],
        live_statuses: dict[str, dict],
    ) -> Optional[Project]:
        try:
            return await self.scan_project(path, category, live_statuses)
        except Exception as e:
            logger.error(f"Failed to scan project {path}: {e}")
            return None

    async def _load_live_statuses(self) -> dict[str, dict]:
        if self.live_status_file is None:
            return {}
        return await asyncio.to_thread(load_live_statuses, self.live_status_file)
