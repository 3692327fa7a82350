"""Backlog and specification readers.

A plan is a Markdown document made of ``## Phase N: <name>`` headings, each followed by
top-level checklist items (``- [ ]``, ``- [x]`` for work already done, ``- [~]`` for work
in progress). Indented sub-bullets are ignored. File hints are taken from backtick spans
that contain a ``/`` and end in an extension.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path

from redgreen.errors import PlanParseError, SpecReadError

PHASE_PATTERN = re.compile(r"^##\s+Phase\s+\d+:\s+(.+)$")
TASK_PATTERN = re.compile(r"^- \[([ x~])\]\s+(.+)$")
BACKTICK_PATTERN = re.compile(r"`([^`]+)`")
FILE_EXTENSION_PATTERN = re.compile(r"\.\w+$")
CRITERION_PATTERN = re.compile(r"^- \[[x ]\]\s+(.+)$")


@dataclass(frozen=True, slots=True)
class PlanTask:
    id: str
    description: str
    phase: str
    files: tuple[str, ...] = ()
    completed: bool = False
    in_progress: bool = False


@dataclass(slots=True)
class Phase:
    name: str
    tasks: list[PlanTask] = field(default_factory=list)


@dataclass(slots=True)
class SpecContext:
    raw: str
    acceptance_criteria: list[str] = field(default_factory=list)


def _file_hints(description: str) -> tuple[str, ...]:
    hints: list[str] = []
    for candidate in BACKTICK_PATTERN.findall(description):
        if "/" in candidate and FILE_EXTENSION_PATTERN.search(candidate):
            hints.append(candidate)
    return tuple(hints)


def parse_plan(text: str) -> list[Phase]:
    phases: list[Phase] = []
    current: Phase | None = None
    task_count = 0

    for line in text.splitlines():
        phase_match = PHASE_PATTERN.match(line)
        if phase_match:
            current = Phase(name=phase_match.group(1).strip())
            phases.append(current)
            continue

        task_match = TASK_PATTERN.match(line)
        if task_match is None or current is None:
            continue
        marker, description = task_match.group(1), task_match.group(2).strip()
        current.tasks.append(
            PlanTask(
                id=f"{len(phases)}.{len(current.tasks) + 1}",
                description=description,
                phase=current.name,
                files=_file_hints(description),
                completed=marker == "x",
                in_progress=marker == "~",
            )
        )
        task_count += 1

    if not phases:
        raise PlanParseError("no phases found in plan")
    if task_count == 0:
        raise PlanParseError("no tasks found in plan")
    return phases


def parse_plan_file(path: Path) -> list[Phase]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PlanParseError(f"cannot read plan {path}: {exc}") from exc
    return parse_plan(text)


def find_task(phases: list[Phase], task_id: str) -> PlanTask | None:
    for phase in phases:
        for task in phase.tasks:
            if task.id == task_id:
                return task
    return None


def count_tasks(phases: list[Phase]) -> int:
    return sum(len(phase.tasks) for phase in phases)


def read_spec(path: Path) -> SpecContext:
    """Read a specification and collect its ``## Acceptance Criteria`` checklist."""
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise SpecReadError(f"cannot read spec {path}: {exc}") from exc
    if not raw.strip():
        raise SpecReadError(f"spec file is empty: {path}")

    context = SpecContext(raw=raw)
    in_criteria = False
    for line in raw.splitlines():
        stripped = line.strip()
        if stripped.startswith("## Acceptance Criteria"):
            in_criteria = True
            continue
        if in_criteria and stripped.startswith("## "):
            break
        if in_criteria:
            match = CRITERION_PATTERN.match(stripped)
            if match:
                context.acceptance_criteria.append(match.group(1))
    return context
