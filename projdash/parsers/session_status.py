"""Read the structured session-status artifact and the live agent-status file.

Both are generic key/value documents written by agent tooling. Anything
that does not parse, or parses to something other than a mapping, is
treated as absent.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import yaml

from projdash.models import LiveStatus

SESSION_STATUS_FILES = (
    Path(".claude") / "project-status.json",
    Path(".claude") / "project-status.yaml",
    Path(".claude") / "project-status.yml",
)

_LIVE_STATUSES = {"working", "waiting", "done", "error", "idle"}


def _load_mapping(path: Path) -> dict[str, Any] | None:
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        return None
    if not text.strip():
        return None
    try:
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError):
        return None
    return data if isinstance(data, dict) else None


def read_session_status(project_root: Path) -> dict[str, Any] | None:
    """Return the first session-status document found under ``project_root``."""
    for relative in SESSION_STATUS_FILES:
        path = project_root / relative
        if not path.exists():
            continue
        return _load_mapping(path)
    return None


def load_live_statuses(status_file: Path) -> dict[str, dict[str, Any]]:
    """Load ``{"projects": {<path>: {...}}}`` from the live status file."""
    data = _load_mapping(status_file)
    if not data:
        return {}
    projects = data.get("projects")
    if not isinstance(projects, dict):
        return {}
    return {str(k): v for k, v in projects.items() if isinstance(v, dict)}


def to_live_status(raw: dict[str, Any] | None) -> LiveStatus | None:
    if not raw:
        return None
    status = str(raw.get("status") or "idle").strip().lower()
    if status not in _LIVE_STATUSES:
        status = "idle"
    return LiveStatus(
        status=status,
        message=str(raw.get("message") or ""),
        task=str(raw.get("task") or ""),
        updatedAt=str(raw.get("updatedAt") or raw.get("detectedAt") or ""),
    )
