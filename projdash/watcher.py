"""File watcher service using watchfiles.

Watches the projects root, maps every settled filesystem change to the
project directory that owns it, and coalesces bursts of changes into a
single callback per debounce window.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from watchfiles import Change, DefaultFilter, awatch

from projdash import config

logger = logging.getLogger("projdash.watcher")

ChangeCallback = Callable[[set[Path]], Union[Awaitable[Any], Any]]


def _relative_parts(root: Path, path: Path) -> Optional[tuple[str, ...]]:
    for base in (root, root.resolve()):
        try:
            return path.relative_to(base).parts
        except ValueError:
            continue
    return None


def _project_offset(parts: tuple[str, ...], category_folders: frozenset[str]) -> int:
    if parts[0] in category_folders and len(parts) >= 2:
        return 2
    return 1


def project_dir_for(root: Path, path: Union[str, Path], category_folders: Iterable[str] = ()) -> Optional[Path]:
    """Return the project directory owning ``path``, or None if outside the root."""
    parts = _relative_parts(root, Path(path))
    if not parts:
        return None
    offset = _project_offset(parts, frozenset(category_folders))
    return root.joinpath(*parts[:offset])


class ProjectWatchFilter(DefaultFilter):
    """Depth-bounded filter that skips build output and hidden entries.

    Inside a project the only hidden paths let through are the git refs
    (so commits and checkouts trigger a rescan) and the `.claude/` status
    directory.
    """

    def __init__(
        self,
        root: Path,
        *,
        max_depth: int = config.WATCH_DEPTH,
        skip_dirs: Iterable[str] = config.SKIP_DIRS,
        category_folders: Iterable[str] = config.CATEGORY_FOLDERS,
    ):
        # Directory matching is done on root-relative parts below; the base
        # class only contributes its editor/OS noise file patterns.
        super().__init__(ignore_dirs=())
        self.root = root
        self.skip_dirs = frozenset(d for d in skip_dirs if d != ".git")
        self.max_depth = max_depth
        self.category_folders = frozenset(category_folders)

    def __call__(self, change: Change, path: str) -> bool:
        parts = _relative_parts(self.root, Path(path))
        if not parts:
            return False
        if len(parts) - 1 > self.max_depth:
            return False
        if any(part in self.skip_dirs for part in parts):
            return False

        offset = _project_offset(parts, self.category_folders)
        if any(part.startswith(".") for part in parts[:offset]):
            return False
        if not self._allowed_inside_project(parts[offset:]):
            return False
        return super().__call__(change, path)

    @staticmethod
    def _allowed_inside_project(inner: tuple[str, ...]) -> bool:
        if not inner:
            return True
        if inner[-1].endswith(".lock"):
            return False
        if inner[0] == ".git":
            rest = inner[1:]
            return rest in (("HEAD",), ("packed-refs",)) or (len(rest) >= 2 and rest[0] == "refs")
        if inner[0] == ".claude":
            return not any(part.startswith(".") for part in inner[1:])
        return not any(part.startswith(".") for part in inner)


class EventDebouncer:
    """Accumulates project directories and flushes them after a quiet period.

    `record_event` only adds to the pending set and re-arms the timer; the
    timer callback is the only place the set is drained.
    """

    def __init__(self, callback: ChangeCallback, delay: float):
        self.callback = callback
        self.delay = delay
        self._pending: set[Path] = set()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._deliveries: set[asyncio.Task] = set()

    @property
    def pending(self) -> frozenset[Path]:
        return frozenset(self._pending)

    def record_event(self, project_dir: Path) -> None:
        self._pending.add(project_dir)
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().call_later(self.delay, self._flush)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._pending.clear()
        for task in list(self._deliveries):
            task.cancel()

    def _flush(self) -> None:
        self._timer = None
        batch = set(self._pending)
        self._pending.clear()
        if not batch:
            return
        task = asyncio.get_running_loop().create_task(self._deliver(batch))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, batch: set[Path]) -> None:
        try:
            result = self.callback(batch)
            if inspect.isawaitable(result):
                await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error handling changes for {len(batch)} projects: {e}")


class ChangeWatcher:
    """Background watcher that reports changed project directories."""

    def __init__(
        self,
        root: Path,
        on_change: ChangeCallback,
        *,
        debounce_ms: int = config.DEBOUNCE_MS,
        stability_ms: int = config.WRITE_STABILITY_MS,
        max_depth: int = config.WATCH_DEPTH,
        retry_delay: float = config.WATCH_RETRY_SECONDS,
        category_folders: Iterable[str] = config.CATEGORY_FOLDERS,
    ):
        self.root = Path(root).expanduser().absolute()
        self.category_folders = frozenset(category_folders)
        self.stability_ms = stability_ms
        self.retry_delay = retry_delay
        self.debouncer = EventDebouncer(on_change, debounce_ms / 1000)
        self.watch_filter = ProjectWatchFilter(
            self.root, max_depth=max_depth, category_folders=self.category_folders
        )
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._running = False

    async def start(self) -> None:
        """Start watching the root in a background task."""
        if self._running:
            logger.warning("File watcher already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop())
        logger.info(f"File watcher started for {self.root}")

    async def stop(self) -> None:
        """Stop the file watcher and drop any pending, unflushed changes."""
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.debouncer.cancel()
        logger.info("File watcher stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    def handle_changes(self, changes: Iterable[tuple[Change, str]]) -> int:
        """Feed raw watchfiles changes to the debouncer; returns how many were mapped."""
        mapped = 0
        for _change_type, path_str in changes:
            project_dir = project_dir_for(self.root, path_str, self.category_folders)
            if project_dir is None:
                continue
            self.debouncer.record_event(project_dir)
            mapped += 1
        return mapped

    async def _watch_loop(self) -> None:
        if not self.root.is_dir():
            logger.warning(f"Projects root {self.root} does not exist, watcher has nothing to monitor")
            self._running = False
            return

        stop_event = self._stop_event
        delay = self.retry_delay
        try:
            while self._running and not stop_event.is_set():
                try:
                    await self._watch_once(stop_event)
                    delay = self.retry_delay
                except Exception as e:
                    logger.error(f"File watcher error: {e}, restarting in {delay:.1f}s")
                    try:
                        await asyncio.wait_for(stop_event.wait(), timeout=delay)
                    except asyncio.TimeoutError:
                        pass
                    delay = min(delay * 2, config.WATCH_RETRY_MAX_SECONDS)
        except asyncio.CancelledError:
            logger.info("File watcher task cancelled")
        finally:
            self._running = False

    async def _watch_once(self, stop_event: asyncio.Event) -> None:
        """Run one `awatch` session until it ends or ``stop_event`` is set."""
        async for changes in awatch(
            self.root,
            watch_filter=self.watch_filter,
            step=self.stability_ms,
            stop_event=stop_event,
            ignore_permission_denied=True,
        ):
            if not self._running:
                break
            mapped = self.handle_changes(changes)
            if mapped:
                logger.debug(f"Detected {mapped} file changes")
