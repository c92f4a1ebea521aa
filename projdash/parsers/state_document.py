"""Parse CLAUDE_STATE.md, the hand-maintained markdown project-state document."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

STATE_DOCUMENT = "CLAUDE_STATE.md"

_HEADING_RE = re.compile(r"^##\s+(.*)$")
_NUMBERED_RE = re.compile(r"^\s*\d+\.\s*(.+)$")
_BULLET_RE = re.compile(r"^\s*[-*]\s+(.+)$")
_NO_ISSUES = "none currently tracked"


@dataclass
class StateDocument:
    summary: str | None = None
    tech_stack: list[str] = field(default_factory=list)
    current_status: dict[str, str] = field(default_factory=dict)
    immediate_goals: list[str] = field(default_factory=list)
    known_issues: list[str] = field(default_factory=list)


def _split_sections(text: str) -> list[tuple[str, list[str]]]:
    sections: list[tuple[str, list[str]]] = []
    current: list[str] | None = None
    for line in text.splitlines():
        heading = _HEADING_RE.match(line)
        if heading:
            current = []
            sections.append((heading.group(1).strip().lower(), current))
            continue
        if current is None:
            continue
        if line.strip() == "---":
            current = None
            continue
        current.append(line)
    return sections


def _section(sections: list[tuple[str, list[str]]], keyword: str) -> list[str]:
    for title, lines in sections:
        if keyword in title:
            return lines
    return []


def _table_rows(lines: list[str]) -> list[list[str]]:
    rows: list[list[str]] = []
    for line in lines:
        stripped = line.strip()
        if not stripped.startswith("|"):
            continue
        cells = [cell.strip() for cell in stripped.strip("|").split("|")]
        if not cells or all(set(cell) <= set("-: ") for cell in cells):
            continue
        rows.append(cells)
    return rows


def parse_state_document(text: str) -> StateDocument:
    sections = _split_sections(text)
    doc = StateDocument()

    for line in _section(sections, "project overview"):
        if line.strip():
            doc.summary = line.strip()
            break

    for cells in _table_rows(_section(sections, "tech stack")):
        tech = cells[0]
        if tech and tech.lower() not in {"technology", "tech", "name"}:
            doc.tech_stack.append(tech)

    for cells in _table_rows(_section(sections, "current status")):
        if len(cells) < 2:
            continue
        area, status = cells[0], cells[1]
        if area and area.lower() not in {"area", "status"}:
            doc.current_status[area] = status

    for line in _section(sections, "immediate goals"):
        match = _NUMBERED_RE.match(line)
        if match:
            doc.immediate_goals.append(match.group(1).strip())

    for line in _section(sections, "known issues"):
        match = _BULLET_RE.match(line)
        if match:
            issue = match.group(1).strip()
            if issue and issue.lower() != _NO_ISSUES:
                doc.known_issues.append(issue)

    return doc


def read_state_document(project_root: Path) -> StateDocument | None:
    try:
        text = (project_root / STATE_DOCUMENT).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    return parse_state_document(text)
