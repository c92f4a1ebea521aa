"""Read-only git inspection.

`GitInspector` turns a project directory into a `RepositoryScan` by running a
handful of git commands through a `VcsClient`. `GitClient` is the real
implementation; tests substitute a client that returns canned output.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Protocol, Sequence, TypeVar

from projdash import config
from projdash.models import ChangedFile, CommitSummary, GitInfo, GitStatus
from projdash.observability import record_command_failure
from projdash.parsers.git_output import (
    GRAPH_LOG_FORMAT,
    SUMMARY_LOG_FORMAT,
    parse_ahead_behind,
    parse_branch_list,
    parse_commit_summaries,
    parse_git_log,
    parse_porcelain_status,
)

logger = logging.getLogger("projdash.vcs")

T = TypeVar("T")


class VcsError(Exception):
    """Base class for version-control inspection failures."""


class NotARepository(VcsError):
    """The directory is not inside a git work tree."""


class CommandFailed(VcsError):
    """A git command exited non-zero, timed out or could not be spawned."""

    def __init__(self, args: Sequence[str], reason: str, *, timed_out: bool = False):
        self.command = " ".join(args)
        self.reason = reason
        self.timed_out = timed_out
        super().__init__(f"git {self.command}: {reason}")


class VcsClient(Protocol):
    async def run(self, cwd: Path, args: Sequence[str], timeout: float) -> str:
        """Run one command in ``cwd`` and return raw stdout, or raise CommandFailed."""
        ...


class GitClient:
    """Spawns the local ``git`` executable."""

    def __init__(self, executable: str = "git", kill_grace: float = config.GIT_KILL_GRACE_SECONDS):
        self.executable = executable
        self.kill_grace = kill_grace
        self._env = {
            **os.environ,
            "GIT_OPTIONAL_LOCKS": "0",
            "GIT_TERMINAL_PROMPT": "0",
            # Report non-ASCII paths verbatim instead of octal-escaped
            "GIT_CONFIG_COUNT": "1",
            "GIT_CONFIG_KEY_0": "core.quotePath",
            "GIT_CONFIG_VALUE_0": "false",
        }

    async def run(self, cwd: Path, args: Sequence[str], timeout: float) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.executable,
                *args,
                cwd=str(cwd),
                env=self._env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            raise CommandFailed(args, str(e)) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            await self._kill_group(proc)
            raise CommandFailed(args, f"timed out after {timeout}s", timed_out=True)

        if proc.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise CommandFailed(args, message or f"exit status {proc.returncode}")
        return stdout.decode("utf-8", errors="replace")

    async def _kill_group(self, proc: asyncio.subprocess.Process) -> None:
        """Kill git and every helper it spawned; they share git's session."""
        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=self.kill_grace)
        except asyncio.TimeoutError:
            logger.warning(f"git process {proc.pid} still holds its pipes after kill")


@dataclass
class RepositoryScan:
    git_info: GitInfo
    changed_files: list[ChangedFile] = field(default_factory=list)
    recent_commits: list[CommitSummary] = field(default_factory=list)


class GitInspector:
    """Collects a GitInfo snapshot (plus working-tree details) for one directory."""

    def __init__(
        self,
        client: VcsClient | None = None,
        *,
        max_commits: int = config.MAX_COMMITS,
        max_branches: int = config.MAX_BRANCHES,
        recent_commits: int = config.RECENT_COMMITS,
        timeout: float = config.GIT_TIMEOUT_SECONDS,
        log_timeout: float = config.GIT_LOG_TIMEOUT_SECONDS,
    ):
        self.client = client or GitClient()
        self.max_commits = max_commits
        self.max_branches = max_branches
        self.recent_commits = recent_commits
        self.timeout = timeout
        self.log_timeout = log_timeout

    async def inspect(self, path: Path) -> RepositoryScan | None:
        """Return the repository snapshot, or None when ``path`` is not a repository."""
        try:
            await self._ensure_repository(path)
        except NotARepository:
            return None

        branch, branches, graph, status, recent, (ahead, behind) = await asyncio.gather(
            self._field(path, "current branch", self.current_branch(path), "HEAD"),
            self._field(path, "branches", self.branches(path), []),
            self._field(path, "history", self.graph_log(path), []),
            self._field(path, "status", self.working_tree(path), []),
            self._field(path, "recent commits", self.recent_history(path), []),
            self._field(path, "upstream", self.ahead_behind(path), (0, 0)),
        )

        git_info = GitInfo(
            currentBranch=branch,
            branches=branches,
            commits=graph,
            status=GitStatus(ahead=ahead, behind=behind, uncommitted=len(status)),
        )
        return RepositoryScan(git_info=git_info, changed_files=status, recent_commits=recent)

    async def _ensure_repository(self, path: Path) -> None:
        try:
            await self.client.run(path, ["rev-parse", "--git-dir"], self.timeout)
        except CommandFailed as e:
            raise NotARepository(str(path)) from e

    async def current_branch(self, path: Path) -> str:
        output = await self.client.run(path, ["branch", "--show-current"], self.timeout)
        return output.strip() or "HEAD"

    async def branches(self, path: Path) -> list[str]:
        output = await self.client.run(
            path, ["branch", "-a", "--format=%(refname:short)"], self.timeout
        )
        return parse_branch_list(output, limit=self.max_branches)

    async def graph_log(self, path: Path):
        output = await self.client.run(
            path,
            ["log", "--all", f"-n{self.max_commits}", f"--format={GRAPH_LOG_FORMAT}", "--graph"],
            self.log_timeout,
        )
        return parse_git_log(
            output,
            message_length=config.COMMIT_MESSAGE_LENGTH,
            limit=config.MAX_PARSED_COMMITS,
        )

    async def working_tree(self, path: Path) -> list[ChangedFile]:
        output = await self.client.run(path, ["status", "--porcelain"], self.timeout)
        return parse_porcelain_status(output)

    async def recent_history(self, path: Path) -> list[CommitSummary]:
        output = await self.client.run(
            path,
            ["log", f"-n{self.recent_commits}", f"--format={SUMMARY_LOG_FORMAT}"],
            self.log_timeout,
        )
        return parse_commit_summaries(output)

    async def ahead_behind(self, path: Path) -> tuple[int, int]:
        # No upstream is common; callers treat failure as (0, 0).
        output = await self.client.run(
            path,
            ["rev-list", "--left-right", "--count", "@{upstream}...HEAD"],
            self.timeout,
        )
        return parse_ahead_behind(output)

    async def _field(self, path: Path, label: str, pending: Awaitable[T], default: T) -> T:
        try:
            return await pending
        except CommandFailed as e:
            logger.debug(f"git {label} unavailable for {path}: {e.reason}")
            record_command_failure(e.command.split(" ", 1)[0])
            return default
