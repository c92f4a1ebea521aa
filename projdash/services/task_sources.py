"""Collect and merge the auxiliary per-project task sources.

Each source is read independently into a `PartialFields` (``None`` members
mean "this source did not supply the field"). `merge_task_sources` is the
only place that decides precedence.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from projdash.parsers.checklist import read_checklist, read_progress
from projdash.parsers.session_status import read_session_status
from projdash.parsers.state_document import StateDocument, read_state_document


@dataclass
class PartialFields:
    summary: str | None = None
    completed_tasks: list[str] | None = None
    remaining_tasks: list[str] | None = None
    next_steps: str | None = None


@dataclass
class TaskSources:
    from_session_status: PartialFields | None = None
    from_checklist: list[str] | None = None
    from_progress: list[str] | None = None
    from_state_document: StateDocument | None = None


@dataclass
class TaskFields:
    summary: str | None = None
    completed_tasks: list[str] = field(default_factory=list)
    remaining_tasks: list[str] = field(default_factory=list)
    next_steps: str | None = None
    known_issues: list[str] = field(default_factory=list)
    tech_stack: list[str] = field(default_factory=list)
    current_status: dict[str, str] = field(default_factory=dict)


def _as_text(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (str, int, float)):
        text = str(value).strip()
        return text or None
    return None


def _as_text_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    items = [_as_text(item) for item in value]
    return [item for item in items if item]


def session_fields(raw: dict[str, Any] | None) -> PartialFields | None:
    """Pick the recognized fields out of a session-status document."""
    if raw is None:
        return None
    next_steps = raw.get("nextSteps")
    if isinstance(next_steps, list):
        next_steps = next((item for item in next_steps if _as_text(item)), None)
    return PartialFields(
        summary=_as_text(raw.get("summary")),
        completed_tasks=_as_text_list(raw.get("completedTasks")),
        remaining_tasks=_as_text_list(raw.get("remainingTasks")),
        next_steps=_as_text(next_steps),
    )


def merge_task_sources(sources: TaskSources) -> TaskFields:
    """Merge sources; the session-status document wins for any field it supplies."""
    session = sources.from_session_status or PartialFields()
    state = sources.from_state_document or StateDocument()

    if session.remaining_tasks is not None:
        remaining = list(session.remaining_tasks)
    else:
        remaining = list(sources.from_checklist or [])

    if session.completed_tasks is not None:
        completed = list(session.completed_tasks)
    else:
        completed = list(sources.from_progress or [])

    next_steps = session.next_steps
    if next_steps is None and state.immediate_goals:
        next_steps = state.immediate_goals[0]

    return TaskFields(
        summary=session.summary if session.summary is not None else state.summary,
        completed_tasks=completed,
        remaining_tasks=remaining,
        next_steps=next_steps,
        known_issues=list(state.known_issues),
        tech_stack=list(state.tech_stack),
        current_status=dict(state.current_status),
    )


async def read_task_sources(project_root: Path) -> TaskSources:
    """Read every auxiliary source concurrently; missing files yield None."""
    raw_session, checklist, progress, state = await asyncio.gather(
        asyncio.to_thread(read_session_status, project_root),
        asyncio.to_thread(read_checklist, project_root),
        asyncio.to_thread(read_progress, project_root),
        asyncio.to_thread(read_state_document, project_root),
    )
    return TaskSources(
        from_session_status=session_fields(raw_session),
        from_checklist=checklist,
        from_progress=progress,
        from_state_document=state,
    )
