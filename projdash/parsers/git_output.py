"""Parse git command output into GitCommit / ChangedFile models.

Pure text-to-model translation; nothing here touches the filesystem or
spawns processes.
"""
from __future__ import annotations

import re

from projdash.date_utils import normalize_iso_date
from projdash.models import ChangedFile, CommitSummary, GitCommit

FIELD_SEPARATOR = "\x1f"

# `%x1f` renders the unit separator, so messages containing "|" stay intact.
GRAPH_LOG_FORMAT = "%h%x1f%s%x1f%an%x1f%ar%x1f%D"
SUMMARY_LOG_FORMAT = "%h%x1f%s%x1f%an%x1f%aI"

_GRAPH_LINE_RE = re.compile(r"^([*|/\\_.\- ]*)(.*)$")


def parse_git_log(text: str, message_length: int = 50, limit: int = 10) -> list[GitCommit]:
    """Parse `git log --graph --format=GRAPH_LOG_FORMAT` output.

    Topology-only lines and lines without enough fields are skipped. The
    message is truncated to ``message_length`` and at most ``limit`` commits
    are returned, in input order.
    """
    commits: list[GitCommit] = []
    for line in text.splitlines():
        if len(commits) >= limit:
            break
        if not line.strip():
            continue

        match = _GRAPH_LINE_RE.match(line)
        if not match:
            continue
        graph_chars, data = match.group(1), match.group(2)
        if FIELD_SEPARATOR not in data:
            continue

        parts = data.split(FIELD_SEPARATOR)
        if len(parts) < 4:
            continue

        hash_, message, author, rel_date = (p.strip() for p in parts[:4])
        if not hash_:
            continue
        refs = parts[4] if len(parts) > 4 else ""

        commits.append(GitCommit(
            hash=hash_,
            message=message[:message_length],
            author=author,
            date=rel_date,
            branches=[r.strip() for r in refs.split(",") if r.strip()],
            graphChars=graph_chars.strip(),
        ))

    return commits


def parse_commit_summaries(text: str) -> list[CommitSummary]:
    """Parse `git log --format=SUMMARY_LOG_FORMAT` output, newest first."""
    summaries: list[CommitSummary] = []
    for line in text.splitlines():
        parts = line.split(FIELD_SEPARATOR)
        if len(parts) < 4 or not parts[0].strip():
            continue
        summaries.append(CommitSummary(
            hash=parts[0].strip(),
            message=parts[1].strip(),
            author=parts[2].strip(),
            date=normalize_iso_date(parts[3]) or parts[3].strip(),
        ))
    return summaries


_OCTAL_ESCAPE_RE = re.compile(r"[0-3][0-7]{2}")
_C_ESCAPES = {"a": 7, "b": 8, "t": 9, "n": 10, "v": 11, "f": 12, "r": 13, '"': 34, "\\": 92}


def unquote_git_path(quoted: str) -> str:
    """Undo git's C-style path quoting; octal escapes are raw UTF-8 bytes."""
    out = bytearray()
    i = 0
    while i < len(quoted):
        ch = quoted[i]
        if ch == "\\" and i + 1 < len(quoted):
            octal = quoted[i + 1 : i + 4]
            if _OCTAL_ESCAPE_RE.fullmatch(octal):
                out.append(int(octal, 8))
                i += 4
                continue
            if quoted[i + 1] in _C_ESCAPES:
                out.append(_C_ESCAPES[quoted[i + 1]])
                i += 2
                continue
        out.extend(ch.encode("utf-8"))
        i += 1
    return out.decode("utf-8", errors="replace")


def parse_porcelain_status(text: str) -> list[ChangedFile]:
    """Parse `git status --porcelain` (v1) output."""
    files: list[ChangedFile] = []
    for raw_line in text.splitlines():
        line = raw_line.rstrip("\r")
        if len(line) < 4:
            continue
        codes = line[:2]
        payload = line[3:].strip()
        if " -> " in payload:
            payload = payload.split(" -> ", 1)[1].strip()
        if payload.startswith('"') and payload.endswith('"') and len(payload) > 1:
            payload = unquote_git_path(payload[1:-1])
        if not payload:
            continue

        status = codes.strip()[:1] or "?"
        files.append(ChangedFile(status=status, path=payload))
    return files


def parse_branch_list(text: str, limit: int = 10) -> list[str]:
    """Parse `git branch -a --format=%(refname:short)`; symbolic aliases are dropped."""
    branches = [
        line.strip()
        for line in text.splitlines()
        if line.strip() and "->" not in line
    ]
    return branches[:limit]


def parse_ahead_behind(text: str) -> tuple[int, int]:
    """Parse `git rev-list --left-right --count @{upstream}...HEAD` as (ahead, behind)."""
    parts = text.split()
    if len(parts) != 2:
        return 0, 0
    try:
        behind, ahead = int(parts[0]), int(parts[1])
    except ValueError:
        return 0, 0
    return ahead, behind
