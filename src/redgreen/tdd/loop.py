"""Single-task red/green/regression/commit cycle.

Every collaborator failure is folded into a terminal ``TaskResult`` with a reason string;
``execute_task`` itself only raises for programming errors and cancellation.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

from redgreen.backends.base import BackendEventHook
from redgreen.errors import (
    AgentError,
    PatchError,
    VerificationInfrastructureError,
    VersionControlError,
)
from redgreen.generation import CodeGenRequest, GenerationAgent
from redgreen.plan import PlanTask
from redgreen.tdd.patches import apply_patches, revert_files, snapshot_files, write_test_file
from redgreen.tdd.runner import TestRunner
from redgreen.tdd.verify import check_regression, verify_green, verify_red
from redgreen.vcs import VersionControl

logger = logging.getLogger(__name__)


class TaskOutcome(StrEnum):
    COMMITTED = "committed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(slots=True)
class TaskResult:
    status: TaskOutcome
    commit_sha: str = ""
    test_file: str = ""
    files_changed: list[str] = field(default_factory=list)
    attempts: int = 0
    duration: float = 0.0
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "commit_sha": self.commit_sha,
            "test_file": self.test_file,
            "files_changed": list(self.files_changed),
            "attempts": self.attempts,
            "duration": round(self.duration, 3),
            "reason": self.reason,
        }


@dataclass(slots=True)
class TaskLoopOptions:
    repo_dir: Path
    task: PlanTask
    agent: GenerationAgent
    runner: TestRunner
    vcs: VersionControl
    test_command: str = ""
    spec_context: str = ""
    prior_context: str = ""
    max_retries: int = 2
    language: str = "python"
    restore_on_revert: bool = False
    event_hook: BackendEventHook | None = None


def commit_message(task: PlanTask) -> str:
    return f"feat: {task.description}"


async def execute_task(options: TaskLoopOptions) -> TaskResult:
    start = time.monotonic()
    task = options.task
    result = TaskResult(status=TaskOutcome.FAILED)

    def _emit(event: str, **data: Any) -> None:
        if options.event_hook is not None:
            options.event_hook({"event": event, "task_id": task.id, **data})

    def _finish(status: TaskOutcome, reason: str = "") -> TaskResult:
        result.status = status
        result.reason = reason
        result.duration = time.monotonic() - start
        _emit("task.finished", status=status.value, reason=reason, attempts=result.attempts)
        log = logger.info if status is TaskOutcome.COMMITTED else logger.warning
        log("Task %s %s after %d attempt(s) %s", task.id, status.value, result.attempts, reason)
        return result

    request = CodeGenRequest(
        task_description=task.description,
        spec_context=options.spec_context,
        repo_dir=str(options.repo_dir),
        target_files=list(task.files),
        prior_context=options.prior_context,
        language=options.language,
    )

    # Red phase.
    _emit("task.red_start")
    try:
        artifact = await options.agent.generate_test(request)
    except AgentError as exc:
        return _finish(TaskOutcome.FAILED, f"agent_error: {exc}")

    try:
        test_path = write_test_file(options.repo_dir, artifact)
    except PatchError as exc:
        return _finish(TaskOutcome.FAILED, f"write_test_error: {exc}")
    result.test_file = artifact.test_path

    try:
        red = await verify_red(options.runner, options.repo_dir, test_path)
    except VerificationInfrastructureError as exc:
        return _finish(TaskOutcome.FAILED, f"red_verify_error: {exc}")

    if not red.confirmed:
        if red.compile_error:
            return _finish(TaskOutcome.FAILED, f"red_verify: {red.reason}")
        return _finish(TaskOutcome.SKIPPED, f"already_satisfied: {red.reason}")
    _emit("task.red_confirmed", test_file=artifact.test_path)

    # Green phase with regression check.
    last_output = red.output
    for attempt in range(options.max_retries + 1):
        result.attempts = attempt + 1
        is_last = attempt == options.max_retries
        touched: list[str] = []
        _emit("task.green_attempt", attempt=result.attempts)

        try:
            patches = await options.agent.generate_impl(
                request, artifact.test_content, last_output
            )
        except AgentError as exc:
            return _finish(TaskOutcome.FAILED, f"agent_error: {exc}")

        snapshot = None
        try:
            if options.restore_on_revert:
                snapshot = snapshot_files(options.repo_dir, [patch.path for patch in patches])
            touched = apply_patches(options.repo_dir, patches)
        except PatchError as exc:
            return _finish(TaskOutcome.FAILED, f"patch_error: {exc}")
        result.files_changed = list(touched)

        try:
            green = await verify_green(options.runner, options.repo_dir, test_path)
        except VerificationInfrastructureError as exc:
            return _finish(TaskOutcome.FAILED, f"green_verify_error: {exc}")

        if not green.confirmed:
            last_output = green.output
            try:
                revert_files(options.repo_dir, touched, snapshot)
            except PatchError as exc:
                return _finish(TaskOutcome.FAILED, f"revert_error: {exc}")
            _emit("task.green_failed", attempt=result.attempts, compile_error=green.compile_error)
            if is_last:
                return _finish(TaskOutcome.FAILED, "green_failed_after_retries")
            continue

        try:
            regression = await check_regression(
                options.runner, options.repo_dir, options.test_command
            )
        except VerificationInfrastructureError as exc:
            return _finish(TaskOutcome.FAILED, f"regression_check_error: {exc}")

        if not regression.clean:
            last_output = regression.output
            try:
                revert_files(options.repo_dir, touched, snapshot)
            except PatchError as exc:
                return _finish(TaskOutcome.FAILED, f"revert_error: {exc}")
            _emit(
                "task.regression",
                attempt=result.attempts,
                failed_tests=regression.failed_tests[:20],
            )
            if is_last:
                return _finish(TaskOutcome.FAILED, "regression_after_retries")
            continue

        try:
            options.vcs.stage([*touched, artifact.test_path])
        except VersionControlError as exc:
            return _finish(TaskOutcome.FAILED, f"stage_error: {exc}")
        try:
            result.commit_sha = options.vcs.commit(commit_message(task))
        except VersionControlError as exc:
            return _finish(TaskOutcome.FAILED, f"commit_error: {exc}")
        return _finish(TaskOutcome.COMMITTED)

    return _finish(TaskOutcome.FAILED, "exhausted_retries")
