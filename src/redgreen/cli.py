from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click

from redgreen import __version__
from redgreen.config import RedGreenConfig, load_config, save_config
from redgreen.errors import RedGreenError
from redgreen.events import EVENTS_FILE, EventLog
from redgreen.logs import configure_logging
from redgreen.orchestrator import options_from_config, run
from redgreen.results import load_results
from redgreen.tracker import PROGRESS_FILE, ProgressTracker

DEFAULT_CONFIG = "redgreen.toml"
FAILING_STATUSES = frozenset({"fail", "error"})


def _resolve_path(repo_root: Path, value: str) -> Path:
    path = Path(value)
    if not path.is_absolute():
        path = repo_root / path
    return path.resolve()


def _apply_overrides(
    config: RedGreenConfig,
    *,
    spec_dir: str | None,
    output_dir: str | None,
    branch: str | None,
    test_command: str | None,
    backend: str | None,
    max_retries: int | None,
    max_consecutive_failures: int | None,
    timeout: float | None,
) -> RedGreenConfig:
    if spec_dir is not None:
        config.run.spec_dir = spec_dir
    if output_dir is not None:
        config.run.output_dir = output_dir
    if branch is not None:
        config.run.branch_name = branch
    if test_command is not None:
        config.project.test_command = test_command
    if backend is not None:
        config.agent.primary = backend  # type: ignore[assignment]
    if max_retries is not None:
        config.loop.max_retries = max_retries
    if max_consecutive_failures is not None:
        config.loop.max_consecutive_failures = max_consecutive_failures
    if timeout is not None:
        config.loop.timeout_seconds = timeout
    return config


@click.group()
@click.version_option(__version__, prog_name="redgreen")
def cli() -> None:
    """Drive a code-generation agent through red/green/commit cycles."""


@cli.command("init")
@click.option("--backend", type=click.Choice(["codex", "claude"]), default=None)
@click.option("--test-command", default=None, help="Full test suite command.")
@click.option("--config", "config_value", default=DEFAULT_CONFIG, show_default=True)
def init_command(backend: str | None, test_command: str | None, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    config_path = _resolve_path(repo_root, config_value)
    try:
        config = load_config(config_path)
    except RedGreenError as exc:
        raise click.ClickException(str(exc)) from exc
    if backend:
        config.agent.primary = backend  # type: ignore[assignment]
    if test_command is not None:
        config.project.test_command = test_command
    save_config(config_path, config)
    output_dir = _resolve_path(repo_root, config.run.output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    click.echo(f"Initialized redgreen in {repo_root}")
    click.echo(f"Config: {config_path}")
    click.echo(f"Backend: {config.agent.primary} (fallback {config.agent.fallback})")
    click.echo(f"Output: {output_dir}")


@cli.command("run")
@click.option("--config", "config_value", default=DEFAULT_CONFIG, show_default=True)
@click.option("--repo", "repo_value", default=".", envvar="REDGREEN_REPO_DIR", show_default=True)
@click.option("--spec-dir", default=None, envvar="REDGREEN_SPEC_DIR")
@click.option("--output-dir", default=None, envvar="REDGREEN_OUTPUT_DIR")
@click.option("--branch", default=None, envvar="REDGREEN_BRANCH")
@click.option("--test-command", default=None, envvar="REDGREEN_TEST_CMD")
@click.option(
    "--backend", type=click.Choice(["codex", "claude"]), default=None, envvar="REDGREEN_AGENT"
)
@click.option("--max-retries", type=int, default=None, envvar="REDGREEN_MAX_RETRIES")
@click.option(
    "--max-consecutive-failures",
    type=int,
    default=None,
    envvar="REDGREEN_MAX_CONSECUTIVE_FAILURES",
)
@click.option("--timeout", type=float, default=None, envvar="REDGREEN_TIMEOUT", help="Seconds.")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    envvar="REDGREEN_LOG_LEVEL",
    show_default=True,
)
@click.option("--log-file", default=None, envvar="REDGREEN_LOG_FILE")
def run_command(
    config_value: str,
    repo_value: str,
    spec_dir: str | None,
    output_dir: str | None,
    branch: str | None,
    test_command: str | None,
    backend: str | None,
    max_retries: int | None,
    max_consecutive_failures: int | None,
    timeout: float | None,
    log_level: str,
    log_file: str | None,
) -> None:
    repo_root = Path(repo_value).resolve()
    configure_logging(log_level.upper(), Path(log_file) if log_file else None)
    try:
        config = load_config(_resolve_path(repo_root, config_value))
    except RedGreenError as exc:
        raise click.ClickException(str(exc)) from exc
    config = _apply_overrides(
        config,
        spec_dir=spec_dir,
        output_dir=output_dir,
        branch=branch,
        test_command=test_command,
        backend=backend,
        max_retries=max_retries,
        max_consecutive_failures=max_consecutive_failures,
        timeout=timeout,
    )

    output_path = _resolve_path(repo_root, config.run.output_dir)
    with EventLog(output_path / EVENTS_FILE) as events:
        options = options_from_config(config, repo_root, event_hook=events)
        try:
            results = asyncio.run(run(options, events=events))
        except (RedGreenError, OSError) as exc:
            raise click.ClickException(str(exc)) from exc

    click.echo(results.summary)
    click.echo(f"Status: {results.status}")
    click.echo(f"Confidence: {results.confidence:.2f}")
    click.echo(f"Output: {options.output_dir}")
    if results.status in FAILING_STATUSES:
        raise SystemExit(1)


@cli.command("status")
@click.option("--verbose", is_flag=True, default=False)
@click.option("--config", "config_value", default=DEFAULT_CONFIG, show_default=True)
def status_command(verbose: bool, config_value: str) -> None:
    repo_root = Path.cwd().resolve()
    try:
        config = load_config(_resolve_path(repo_root, config_value))
    except RedGreenError as exc:
        raise click.ClickException(str(exc)) from exc
    output_dir = _resolve_path(repo_root, config.run.output_dir)
    progress_path = output_dir / PROGRESS_FILE
    if not progress_path.exists():
        click.echo("No run recorded yet.")
        return

    try:
        tracker = ProgressTracker.load(progress_path)
        results = load_results(output_dir)
    except (RedGreenError, ValueError, KeyError) as exc:
        raise click.ClickException(str(exc)) from exc

    payload: dict[str, object] = {
        "summary": tracker.summary().to_dict(),
        "consecutive_failures": tracker.consecutive_failures,
        "complete": tracker.is_complete(),
    }
    if results is not None:
        payload["status"] = results.status
        payload["confidence"] = results.confidence
    if verbose:
        payload["tasks"] = [task.to_dict() for task in tracker.tasks]
    click.echo(json.dumps(payload, ensure_ascii=False, indent=2))
