from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, replace
from enum import StrEnum
from pathlib import Path
from typing import Any

from redgreen.errors import InvalidTransition, TrackerError, UnknownTask
from redgreen.plan import Phase

logger = logging.getLogger(__name__)

PROGRESS_FILE = "progress.json"


class TaskStatus(StrEnum):
    PENDING = "pending"
    RED = "red"
    GREEN = "green"
    COMMITTED = "committed"
    SKIPPED = "skipped"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMMITTED, TaskStatus.SKIPPED, TaskStatus.FAILED})
NEXT_STATUS = {
    TaskStatus.PENDING: TaskStatus.RED,
    TaskStatus.RED: TaskStatus.GREEN,
    TaskStatus.GREEN: TaskStatus.COMMITTED,
}


@dataclass(slots=True)
class TaskProgress:
    task_id: str
    description: str
    phase: str
    status: TaskStatus = TaskStatus.PENDING
    reason: str = ""
    commit_sha: str = ""
    test_file: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "task_id": self.task_id,
            "description": self.description,
            "phase": self.phase,
            "status": self.status.value,
        }
        for key in ("reason", "commit_sha", "test_file"):
            value = getattr(self, key)
            if value:
                payload[key] = value
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> TaskProgress:
        return cls(
            task_id=str(payload["task_id"]),
            description=str(payload.get("description", "")),
            phase=str(payload.get("phase", "")),
            status=TaskStatus(payload.get("status", TaskStatus.PENDING)),
            reason=str(payload.get("reason", "")),
            commit_sha=str(payload.get("commit_sha", "")),
            test_file=str(payload.get("test_file", "")),
        )


@dataclass(frozen=True, slots=True)
class TrackerSummary:
    total: int = 0
    pending: int = 0
    red: int = 0
    green: int = 0
    committed: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


class ProgressTracker:
    """Per-task progress records plus the consecutive-failure counter.

    Records are only mutated through the transition methods so that statuses move
    forward (pending, red, green, committed) or jump once to skipped/failed, and never
    leave a terminal state.
    """

    def __init__(
        self, tasks: list[TaskProgress] | None = None, consecutive_failures: int = 0
    ) -> None:
        self._tasks: list[TaskProgress] = list(tasks or [])
        self._index = {task.task_id: position for position, task in enumerate(self._tasks)}
        if len(self._index) != len(self._tasks):
            raise TrackerError("Duplicate task ids in tracker.")
        if consecutive_failures < 0:
            raise TrackerError("consecutive_failures cannot be negative.")
        self._consecutive_failures = consecutive_failures

    @classmethod
    def from_phases(cls, phases: list[Phase]) -> ProgressTracker:
        records = [
            TaskProgress(
                task_id=task.id,
                description=task.description,
                phase=task.phase,
                status=TaskStatus.COMMITTED if task.completed else TaskStatus.PENDING,
            )
            for phase in phases
            for task in phase.tasks
        ]
        return cls(records)

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def tasks(self) -> tuple[TaskProgress, ...]:
        return tuple(replace(task) for task in self._tasks)

    def _find(self, task_id: str) -> TaskProgress | None:
        position = self._index.get(task_id)
        return None if position is None else self._tasks[position]

    def get(self, task_id: str) -> TaskProgress:
        task = self._find(task_id)
        if task is None:
            raise UnknownTask(f"unknown task: {task_id}")
        return replace(task)

    def status_of(self, task_id: str) -> TaskStatus | None:
        task = self._find(task_id)
        return None if task is None else task.status

    def advance(self, task_id: str) -> TaskStatus:
        task = self._find(task_id)
        if task is None:
            raise UnknownTask(f"unknown task: {task_id}")
        next_status = NEXT_STATUS.get(task.status)
        if next_status is None:
            raise InvalidTransition(f"cannot advance task {task_id} in state {task.status}")
        task.status = next_status
        if next_status is TaskStatus.COMMITTED:
            self._consecutive_failures = 0
        return next_status

    def _terminate(self, task_id: str, status: TaskStatus, reason: str) -> TaskProgress | None:
        task = self._find(task_id)
        if task is None:
            logger.warning("Ignoring %s for unknown task %s", status, task_id)
            return None
        if task.status.terminal:
            raise InvalidTransition(
                f"cannot mark task {task_id} {status}: already {task.status}"
            )
        task.status = status
        task.reason = reason
        return task

    def skip(self, task_id: str, reason: str) -> None:
        if self._terminate(task_id, TaskStatus.SKIPPED, reason) is not None:
            self._consecutive_failures = 0

    def fail(self, task_id: str, reason: str) -> None:
        if self._terminate(task_id, TaskStatus.FAILED, reason) is not None:
            self._consecutive_failures += 1

    def set_commit_info(self, task_id: str, commit_sha: str, test_file: str) -> None:
        task = self._find(task_id)
        if task is None:
            raise UnknownTask(f"unknown task: {task_id}")
        task.commit_sha = commit_sha
        task.test_file = test_file

    def next_pending(self) -> TaskProgress | None:
        for task in self._tasks:
            if task.status is TaskStatus.PENDING:
                return replace(task)
        return None

    def is_complete(self) -> bool:
        return all(task.status.terminal for task in self._tasks)

    def can_continue(self, max_consecutive_failures: int) -> bool:
        return self._consecutive_failures < max_consecutive_failures

    def summary(self) -> TrackerSummary:
        counts = {status.value: 0 for status in TaskStatus}
        for task in self._tasks:
            counts[task.status.value] += 1
        return TrackerSummary(total=len(self._tasks), **counts)

    def to_dict(self) -> dict[str, Any]:
        return {
            "tasks": [task.to_dict() for task in self._tasks],
            "consecutive_failures": self._consecutive_failures,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ProgressTracker:
        tasks = payload.get("tasks") or []
        if not isinstance(tasks, list):
            raise TrackerError("Tracker snapshot 'tasks' must be a list.")
        return cls(
            [TaskProgress.from_dict(item) for item in tasks],
            consecutive_failures=int(payload.get("consecutive_failures", 0)),
        )

    def save(self, output_dir: Path) -> Path:
        output_dir.mkdir(parents=True, exist_ok=True)
        path = output_dir / PROGRESS_FILE
        path.write_text(
            json.dumps(self.to_dict(), ensure_ascii=False, indent=2) + "\n",
            encoding="utf-8",
        )
        return path

    @classmethod
    def load(cls, path: Path) -> ProgressTracker:
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise TrackerError(f"Cannot load tracker snapshot {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise TrackerError(f"Tracker snapshot {path} is not an object.")
        return cls.from_dict(payload)
