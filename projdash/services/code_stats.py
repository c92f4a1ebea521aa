"""Per-project line-count statistics with a time-bounded in-memory cache."""
from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from projdash import config
from projdash.date_utils import epoch_to_iso
from projdash.models import CodeStats

logger = logging.getLogger("projdash.code_stats")


@dataclass
class _CacheEntry:
    stats: CodeStats
    computed_at: float


def collect_source_files(
    root: Path,
    skip_dirs: frozenset[str] = config.SKIP_DIRS,
    extensions: frozenset[str] = config.COUNTED_EXTENSIONS,
) -> list[tuple[Path, str]]:
    """Walk ``root`` and return (path, extension) for every countable file."""
    results: list[tuple[Path, str]] = []
    pending = [root]
    while pending:
        directory = pending.pop()
        try:
            with os.scandir(directory) as entries:
                for entry in entries:
                    if entry.name.startswith("."):
                        continue
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            if entry.name not in skip_dirs:
                                pending.append(Path(entry.path))
                        elif entry.is_file():
                            ext = os.path.splitext(entry.name)[1].lower()
                            if ext in extensions:
                                results.append((Path(entry.path), ext))
                    except OSError:
                        continue
        except OSError:
            continue
    results.sort()
    return results


def count_lines(path: Path) -> int:
    try:
        data = path.read_bytes()
    except OSError:
        return 0
    return data.count(b"\n") + 1


class CodeStatsCache:
    """Memoizes `CodeStats` per project path for ``ttl_seconds``.

    Entries are only recomputed on access after expiry; filesystem changes
    inside the window are not observed. Concurrent recomputation of the same
    key is tolerated, the last write wins.
    """

    def __init__(
        self,
        ttl_seconds: float = config.CODE_STATS_TTL_SECONDS,
        batch_size: int = config.CODE_STATS_BATCH_SIZE,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.batch_size = max(1, batch_size)
        self.clock = clock
        self._entries: dict[str, _CacheEntry] = {}

    async def get_or_compute(self, project_path: str | Path) -> CodeStats:
        key = str(project_path)
        cached = self._entries.get(key)
        now = self.clock()
        if cached and (now - cached.computed_at) < self.ttl_seconds:
            return cached.stats

        stats = await self._compute(Path(key))
        self._entries[key] = _CacheEntry(stats=stats, computed_at=now)
        return stats

    def invalidate(self, project_path: str | Path | None = None) -> None:
        if project_path is None:
            self._entries.clear()
            return
        self._entries.pop(str(project_path), None)

    async def _compute(self, root: Path) -> CodeStats:
        started = time.perf_counter()
        files = await asyncio.to_thread(collect_source_files, root)

        languages: dict[str, int] = {}
        total_lines = 0
        for i in range(0, len(files), self.batch_size):
            batch = files[i : i + self.batch_size]
            counts = await asyncio.gather(*(asyncio.to_thread(count_lines, path) for path, _ in batch))
            for (_, ext), lines in zip(batch, counts):
                language = ext[1:]
                languages[language] = languages.get(language, 0) + lines
                total_lines += lines

        logger.debug(
            f"Counted {total_lines} lines in {len(files)} files under {root} "
            f"({(time.perf_counter() - started) * 1000:.0f}ms)"
        )
        return CodeStats(
            totalFiles=len(files),
            totalLines=total_lines,
            languages=languages,
            lastScanned=epoch_to_iso(self.clock()),
        )
