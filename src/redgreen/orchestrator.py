"""End-to-end implementation run.

Reads ``spec.md`` and ``plan.md`` from the spec directory, drives the backlog through the
sequencer under an overall deadline, runs the final suite, scores the run, and writes
``events.ndjson``, ``progress.json``, ``results.json`` and ``summary.md`` to the output
directory.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path

from redgreen.backends import ClaudeCodeBackend, CodexBackend, ResilientBackend, RetryPolicy
from redgreen.backends.base import AgentBackend, BackendEventHook
from redgreen.confidence import score_confidence
from redgreen.config import AgentConfig, BackendName, RedGreenConfig
from redgreen.errors import (
    PlanParseError,
    SpecReadError,
    VerificationInfrastructureError,
    VersionControlError,
)
from redgreen.events import EVENTS_FILE, EventLog
from redgreen.generation import BackendGenerationAgent, GenerationAgent
from redgreen.plan import count_tasks, parse_plan_file, read_spec
from redgreen.results import (
    RunResults,
    build_abstain_results,
    build_error_results,
    build_results,
    render_summary,
    write_results,
    write_summary,
)
from redgreen.sequencer import SequencerOptions, run_all
from redgreen.tdd.runner import CommandTestRunner, TestRunner
from redgreen.tracker import ProgressTracker
from redgreen.vcs import GitRepository, VersionControl

logger = logging.getLogger(__name__)

AGENT_NAME = "redgreen"


@dataclass(slots=True)
class RunOptions:
    repo_dir: Path
    spec_dir: Path
    output_dir: Path
    agent: GenerationAgent
    runner: TestRunner
    vcs: VersionControl
    agent_cli: str = ""
    branch_name: str = ""
    test_command: str = ""
    language: str = "python"
    max_retries: int = 2
    max_consecutive_failures: int = 3
    timeout_seconds: float = 1800.0
    restore_on_revert: bool = False


def _build_single_backend(backend_name: BackendName, repo_root: Path) -> AgentBackend:
    if backend_name == "codex":
        return CodexBackend(working_directory=repo_root)
    return ClaudeCodeBackend(working_directory=repo_root)


def build_backend(
    config: AgentConfig, repo_root: Path, event_hook: BackendEventHook | None = None
) -> ResilientBackend:
    policy = RetryPolicy(
        max_retries=max(0, int(config.max_retries)),
        backoff_seconds=max(0.0, float(config.retry_backoff_seconds)),
        timeout_seconds=max(5.0, float(config.timeout_seconds)),
    )
    return ResilientBackend(
        primary_name=config.primary,
        primary_backend=_build_single_backend(config.primary, repo_root),
        fallback_name=config.fallback,
        fallback_backend=_build_single_backend(config.fallback, repo_root),
        retry_policy=policy,
        event_hook=event_hook,
    )


def options_from_config(
    config: RedGreenConfig,
    repo_dir: Path,
    *,
    event_hook: BackendEventHook | None = None,
) -> RunOptions:
    """Wire the real agent backends, test runner and git repository from configuration."""
    repo_dir = repo_dir.resolve()
    spec_dir = Path(config.run.spec_dir)
    output_dir = Path(config.run.output_dir)
    backend = build_backend(config.agent, repo_dir, event_hook)
    return RunOptions(
        repo_dir=repo_dir,
        spec_dir=spec_dir if spec_dir.is_absolute() else repo_dir / spec_dir,
        output_dir=output_dir if output_dir.is_absolute() else repo_dir / output_dir,
        agent=BackendGenerationAgent(backend, model=config.agent.model or None),
        runner=CommandTestRunner(
            config.project.scoped_test_command,
            scoped_timeout_seconds=config.loop.scoped_timeout_seconds,
            suite_timeout_seconds=config.loop.suite_timeout_seconds,
        ),
        vcs=GitRepository(repo_dir),
        agent_cli=config.agent.primary,
        branch_name=config.run.branch_name,
        test_command=config.project.test_command,
        language=config.project.language,
        max_retries=config.loop.max_retries,
        max_consecutive_failures=config.loop.max_consecutive_failures,
        timeout_seconds=config.loop.timeout_seconds,
        restore_on_revert=config.loop.restore_on_revert,
    )


async def _final_suite(options: RunOptions, events: EventLog) -> bool:
    if not options.test_command:
        return True
    try:
        suite = await options.runner.run_suite(options.repo_dir, options.test_command)
    except VerificationInfrastructureError as exc:
        logger.error("Final suite could not run: %s", exc)
        events.emit("error", stage="suite_check", error=str(exc))
        return False
    events.emit(
        "implement.suite_check", passed=suite.passed, failed_tests=suite.failed_tests[:20]
    )
    return suite.passed


def _abstain(options: RunOptions, events: EventLog, reason: str) -> RunResults:
    logger.warning("Abstaining: %s", reason)
    events.emit("agent.end", status="abstain", reason=reason)
    results = build_abstain_results(reason)
    write_results(options.output_dir, results)
    return results


async def run(options: RunOptions, *, events: EventLog | None = None) -> RunResults:
    start = time.monotonic()
    options.output_dir.mkdir(parents=True, exist_ok=True)
    owns_events = events is None
    if events is None:
        events = EventLog(options.output_dir / EVENTS_FILE).open()
    try:
        return await _run(options, events, start)
    finally:
        if owns_events:
            events.close()


async def _run(options: RunOptions, events: EventLog, start: float) -> RunResults:
    events.emit("agent.start", agent=AGENT_NAME, repo_dir=str(options.repo_dir))

    try:
        spec = read_spec(options.spec_dir / "spec.md")
    except SpecReadError as exc:
        return _abstain(options, events, f"spec read failed: {exc}")
    try:
        phases = parse_plan_file(options.spec_dir / "plan.md")
    except PlanParseError as exc:
        return _abstain(options, events, f"plan parse failed: {exc}")
    events.emit(
        "implement.plan_parsed",
        phases=len(phases),
        tasks=count_tasks(phases),
        acceptance_criteria=len(spec.acceptance_criteria),
    )
    logger.info(
        "Parsed %d phase(s), %d task(s), %d acceptance criteria",
        len(phases),
        count_tasks(phases),
        len(spec.acceptance_criteria),
    )

    tracker = ProgressTracker.from_phases(phases)

    if options.branch_name:
        try:
            options.vcs.create_branch(options.branch_name)
        except VersionControlError as exc:
            logger.error("Cannot create branch %s: %s", options.branch_name, exc)
            events.emit("error", stage="create_branch", error=str(exc))

    sequencer = SequencerOptions(
        repo_dir=options.repo_dir,
        phases=phases,
        tracker=tracker,
        agent=options.agent,
        runner=options.runner,
        vcs=options.vcs,
        test_command=options.test_command,
        spec_context=spec.raw,
        max_retries=options.max_retries,
        max_consecutive_failures=options.max_consecutive_failures,
        language=options.language,
        restore_on_revert=options.restore_on_revert,
        output_dir=options.output_dir,
        event_hook=events,
    )

    timed_out = False
    sequencer_error = ""
    try:
        outcome = await asyncio.wait_for(run_all(sequencer), timeout=options.timeout_seconds)
    except TimeoutError:
        timed_out = True
        logger.error("Run timed out after %.0fs", options.timeout_seconds)
        events.emit("implement.timeout", timeout_seconds=options.timeout_seconds)
    except OSError as exc:
        sequencer_error = str(exc) or type(exc).__name__
        logger.error("Sequencer stopped: %s", exc)
        events.emit("error", stage="sequencer", error=sequencer_error)
    else:
        events.emit("implement.sequencer_done", **outcome.to_dict())

    if timed_out or sequencer_error:
        suite_passed = False
    else:
        suite_passed = await _final_suite(options, events)

    summary = tracker.summary()
    confidence = score_confidence(summary, suite_passed)
    events.emit("implement.confidence_scored", score=confidence.score, status=confidence.status)

    metadata = {
        "repo_dir": str(options.repo_dir),
        "agent_cli": options.agent_cli,
        "branch": options.branch_name,
    }
    if sequencer_error:
        results = build_error_results(summary, sequencer_error, **metadata)
    else:
        results = build_results(summary, confidence, **metadata)
    markdown = render_summary(tracker.tasks, summary, confidence, time.monotonic() - start)
    write_results(options.output_dir, results)
    write_summary(options.output_dir, markdown)
    tracker.save(options.output_dir)

    events.emit("agent.end", status=results.status)
    logger.info(results.summary)
    return results
