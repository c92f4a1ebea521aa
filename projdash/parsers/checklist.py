"""Parse markdown checklists (task_plan.md, TODO.md, progress.md) into task lists."""
from __future__ import annotations

import re
from pathlib import Path

from projdash import config

_UNCHECKED_RE = re.compile(r"^\s*[-*]\s*\[\s*\]\s*(.+)$")
_CHECKED_RE = re.compile(r"^\s*[-*]\s*\[[xX]\]\s*(.+)$")

# Checklist documents in priority order; the first one with open items wins.
CHECKLIST_FILES = ("task_plan.md", "TODO.md")
PROGRESS_FILE = "progress.md"


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def parse_open_items(text: str, limit: int = config.MAX_TASKS) -> list[str]:
    """Return the text of every `- [ ] item` line."""
    items: list[str] = []
    for line in text.splitlines():
        match = _UNCHECKED_RE.match(line)
        if match and match.group(1).strip():
            items.append(match.group(1).strip())
    return items[:limit]


def parse_done_items(text: str, limit: int = config.MAX_TASKS) -> list[str]:
    """Return the text of every `- [x] item` line."""
    items: list[str] = []
    for line in text.splitlines():
        match = _CHECKED_RE.match(line)
        if match and match.group(1).strip():
            items.append(match.group(1).strip())
    return items[:limit]


def read_checklist(project_root: Path) -> list[str] | None:
    """Open tasks from the first checklist document that has any; None if none do."""
    for name in CHECKLIST_FILES:
        text = _read_text(project_root / name)
        if text is None:
            continue
        items = parse_open_items(text)
        if items:
            return items
    return None


def read_progress(project_root: Path) -> list[str] | None:
    text = _read_text(project_root / PROGRESS_FILE)
    if text is None:
        return None
    return parse_done_items(text) or None
