"""Pydantic models matching the frontend TypeScript types."""
from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Optional


# ── Git models ─────────────────────────────────────────────────────

class GitCommit(BaseModel):
    model_config = ConfigDict(frozen=True)

    hash: str
    message: str = ""  # truncated at parse time
    author: str = ""
    date: str = ""  # relative, e.g. "2 hours ago"
    branches: list[str] = Field(default_factory=list)
    graphChars: str = ""


class GitStatus(BaseModel):
    ahead: int = 0
    behind: int = 0
    uncommitted: int = 0


class GitInfo(BaseModel):
    currentBranch: str = ""
    branches: list[str] = Field(default_factory=list)
    commits: list[GitCommit] = Field(default_factory=list)
    status: GitStatus = Field(default_factory=GitStatus)


class CommitSummary(BaseModel):
    hash: str = ""
    message: str = ""
    author: str = ""
    date: str = ""  # ISO 8601


class ChangedFile(BaseModel):
    status: str  # single-letter porcelain code, "?" for untracked
    path: str


# ── Auxiliary status models ────────────────────────────────────────

class CodeStats(BaseModel):
    totalFiles: int = 0
    totalLines: int = 0
    languages: dict[str, int] = Field(default_factory=dict)
    lastScanned: str = ""


class LiveStatus(BaseModel):
    status: str = "idle"  # "working" | "waiting" | "done" | "error" | "idle"
    message: str = ""
    task: str = ""
    updatedAt: str = ""


# ── Project model ──────────────────────────────────────────────────

class Project(BaseModel):
    name: str
    path: str
    category: Optional[str] = None
    branch: str = ""
    uncommittedChanges: int = 0
    changedFiles: list[ChangedFile] = Field(default_factory=list)
    lastCommit: Optional[CommitSummary] = None
    recentCommits: list[CommitSummary] = Field(default_factory=list)
    lastActivity: str = ""
    summary: Optional[str] = None
    completedTasks: list[str] = Field(default_factory=list)
    remainingTasks: list[str] = Field(default_factory=list)
    nextSteps: Optional[str] = None
    knownIssues: list[str] = Field(default_factory=list)
    techStack: list[str] = Field(default_factory=list)
    currentStatus: dict[str, str] = Field(default_factory=dict)
    liveStatus: Optional[LiveStatus] = None
    gitInfo: Optional[GitInfo] = None
    codeStats: Optional[CodeStats] = None


# ── Timeline models ────────────────────────────────────────────────

class TimelineEntry(BaseModel):
    id: str
    type: str  # "commit" | "claude_session"
    project: str
    projectPath: str
    message: str = ""
    date: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
