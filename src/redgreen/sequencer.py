from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from redgreen.backends.base import BackendEventHook
from redgreen.generation import GenerationAgent
from redgreen.plan import Phase, PlanTask, find_task
from redgreen.tdd.loop import TaskLoopOptions, TaskOutcome, TaskResult, execute_task
from redgreen.tdd.runner import TestRunner
from redgreen.tracker import ProgressTracker, TaskProgress, TaskStatus
from redgreen.vcs import VersionControl

logger = logging.getLogger(__name__)

TaskExecutor = Callable[[TaskLoopOptions], Awaitable[TaskResult]]


@dataclass(slots=True)
class SequencerOptions:
    repo_dir: Path
    phases: list[Phase]
    tracker: ProgressTracker
    agent: GenerationAgent
    runner: TestRunner
    vcs: VersionControl
    test_command: str = ""
    spec_context: str = ""
    max_retries: int = 2
    max_consecutive_failures: int = 3
    language: str = "python"
    restore_on_revert: bool = False
    output_dir: Path | None = None
    event_hook: BackendEventHook | None = None
    executor: TaskExecutor = execute_task


@dataclass(frozen=True, slots=True)
class SequencerResult:
    total: int
    committed: int
    skipped: int
    failed: int
    pending: int
    halted: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _plan_task(phases: list[Phase], progress: TaskProgress) -> PlanTask:
    task = find_task(phases, progress.task_id)
    if task is not None:
        return task
    return PlanTask(id=progress.task_id, description=progress.description, phase=progress.phase)


def prior_context(tracker: ProgressTracker) -> str:
    """List the tasks already committed so later generations build on them."""
    lines = []
    for task in tracker.tasks:
        if task.status is not TaskStatus.COMMITTED:
            continue
        line = f"- {task.task_id}: {task.description}"
        if task.test_file:
            line += f" (test: {task.test_file})"
        lines.append(line)
    if not lines:
        return ""
    return "Completed tasks:\n" + "\n".join(lines)


def record_result(tracker: ProgressTracker, task_id: str, result: TaskResult) -> None:
    """Apply one terminal task result to the tracker."""
    if result.status is TaskOutcome.COMMITTED:
        for _ in range(3):
            tracker.advance(task_id)
        tracker.set_commit_info(task_id, result.commit_sha, result.test_file)
    elif result.status is TaskOutcome.SKIPPED:
        tracker.skip(task_id, result.reason)
    else:
        tracker.fail(task_id, result.reason)


async def run_all(options: SequencerOptions) -> SequencerResult:
    """Drive every pending task through the task loop until done or the breaker trips."""
    tracker = options.tracker

    def _emit(event: str, **data: Any) -> None:
        if options.event_hook is not None:
            options.event_hook({"event": event, **data})

    halted = False
    while True:
        if not tracker.can_continue(options.max_consecutive_failures):
            halted = tracker.next_pending() is not None
            if halted:
                logger.warning(
                    "Stopping after %d consecutive failures", tracker.consecutive_failures
                )
                _emit("sequencer.halted", consecutive_failures=tracker.consecutive_failures)
            break
        progress = tracker.next_pending()
        if progress is None:
            break

        task = _plan_task(options.phases, progress)
        logger.info("Task %s: %s", task.id, task.description)
        _emit("task.start", task_id=task.id, description=task.description, phase=task.phase)
        loop_options = TaskLoopOptions(
            repo_dir=options.repo_dir,
            task=task,
            agent=options.agent,
            runner=options.runner,
            vcs=options.vcs,
            test_command=options.test_command,
            spec_context=options.spec_context,
            prior_context=prior_context(tracker),
            max_retries=options.max_retries,
            language=options.language,
            restore_on_revert=options.restore_on_revert,
            event_hook=options.event_hook,
        )
        try:
            result = await options.executor(loop_options)
        except Exception as exc:
            logger.exception("Task %s could not be executed", task.id)
            tracker.fail(task.id, f"executor_error: {exc}")
        else:
            record_result(tracker, task.id, result)

        if options.output_dir is not None:
            tracker.save(options.output_dir)

    summary = tracker.summary()
    return SequencerResult(
        total=summary.total,
        committed=summary.committed,
        skipped=summary.skipped,
        failed=summary.failed,
        pending=summary.pending,
        halted=halted,
    )
