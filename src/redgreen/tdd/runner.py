from __future__ import annotations

import asyncio
import logging
import re
import shlex
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from redgreen.errors import TestTimeoutError, VerificationInfrastructureError

logger = logging.getLogger(__name__)

SHELL_REQUIRED_PATTERN = re.compile(r"(?:\|\||&&|[|;<>`]|[$]\()")
COMPILE_ERROR_MARKERS = (
    "build failed",
    "undefined",
    "cannot ",
    "syntax error",
    "SyntaxError",
    "IndentationError",
)
PYTEST_FAILED_PATTERN = re.compile(r"^(?:FAILED|ERROR)\s+(\S+)")
GO_FAILED_PATTERN = re.compile(r"^--- FAIL:\s+(\S+)")
DEFAULT_SUITE_COMMAND = "python -m pytest -q"
TARGET_PLACEHOLDER = "{target}"


@dataclass(slots=True)
class ScopedRun:
    passed: bool
    compile_error: bool
    output: str


@dataclass(slots=True)
class SuiteRun:
    passed: bool
    output: str
    failed_tests: list[str] = field(default_factory=list)


def is_compile_error(output: str) -> bool:
    return any(marker in output for marker in COMPILE_ERROR_MARKERS)


def first_error_line(output: str) -> str:
    markers = COMPILE_ERROR_MARKERS[1:]
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if any(marker in line for marker in markers):
            return line
    return "see output"


def extract_failed_tests(output: str) -> list[str]:
    failed: list[str] = []
    for raw_line in output.splitlines():
        line = raw_line.strip()
        match = PYTEST_FAILED_PATTERN.match(line) or GO_FAILED_PATTERN.match(line)
        if match:
            failed.append(match.group(1))
    return failed


def scoped_target(root: Path, test_path: Path) -> str:
    """Return the directory holding ``test_path`` relative to ``root`` (``.`` for the root)."""
    root_abs = root.resolve()
    candidate = test_path if test_path.is_absolute() else root_abs / test_path
    package_dir = candidate.resolve().parent
    if package_dir != root_abs and root_abs not in package_dir.parents:
        raise VerificationInfrastructureError(
            f"test path {test_path} is outside repository root {root_abs}"
        )
    relative = package_dir.relative_to(root_abs).as_posix()
    return relative or "."


class TestRunner(ABC):
    """Runs tests for the red/green verifier and the regression check."""

    __test__ = False

    @abstractmethod
    async def run_scoped(self, root: Path, test_path: Path) -> ScopedRun:
        """Run only the package that contains ``test_path``."""

    @abstractmethod
    async def run_suite(self, root: Path, command: str) -> SuiteRun:
        """Run the project's full test command."""


class CommandTestRunner(TestRunner):
    def __init__(
        self,
        scoped_command: str = f"python -m pytest -q {TARGET_PLACEHOLDER}",
        *,
        scoped_timeout_seconds: float = 30.0,
        suite_timeout_seconds: float = 600.0,
    ) -> None:
        self.scoped_command = scoped_command
        self.scoped_timeout_seconds = scoped_timeout_seconds
        self.suite_timeout_seconds = suite_timeout_seconds

    def build_scoped_command(self, target: str) -> str:
        quoted = shlex.quote(target)
        if TARGET_PLACEHOLDER in self.scoped_command:
            return self.scoped_command.replace(TARGET_PLACEHOLDER, quoted)
        return f"{self.scoped_command} {quoted}"

    async def run_scoped(self, root: Path, test_path: Path) -> ScopedRun:
        command = self.build_scoped_command(scoped_target(root, test_path))
        exit_code, output = await run_command(
            command, cwd=root, timeout_seconds=self.scoped_timeout_seconds
        )
        passed = exit_code == 0
        return ScopedRun(
            passed=passed,
            compile_error=not passed and is_compile_error(output),
            output=output,
        )

    async def run_suite(self, root: Path, command: str) -> SuiteRun:
        exit_code, output = await run_command(
            command.strip() or DEFAULT_SUITE_COMMAND,
            cwd=root,
            timeout_seconds=self.suite_timeout_seconds,
        )
        if exit_code == 0:
            return SuiteRun(passed=True, output=output)
        return SuiteRun(passed=False, output=output, failed_tests=extract_failed_tests(output))


async def run_command(command: str, *, cwd: Path, timeout_seconds: float) -> tuple[int, str]:
    """Run ``command`` in ``cwd`` and return its exit code and combined stdout/stderr.

    Commands with shell operators go through the shell, the rest are split with
    ``shlex``. The process is killed on timeout and on cancellation.
    """
    command_text = command.strip()
    if not command_text:
        raise VerificationInfrastructureError("Command is empty.")

    used_shell = bool(SHELL_REQUIRED_PATTERN.search(command_text))
    argv: list[str] = []
    if not used_shell:
        try:
            argv = shlex.split(command_text)
        except ValueError:
            used_shell = True

    try:
        if used_shell:
            process = await asyncio.create_subprocess_shell(
                command_text,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        else:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
    except OSError as exc:
        raise VerificationInfrastructureError(f"cannot run {command_text!r}: {exc}") from exc

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        await _kill(process)
        raise TestTimeoutError(
            f"{command_text!r} timed out after {timeout_seconds:.1f}s"
        ) from exc
    except asyncio.CancelledError:
        await _kill(process)
        raise

    output = stdout.decode("utf-8", errors="replace") + stderr.decode("utf-8", errors="replace")
    logger.debug("%r exited with %s", command_text, process.returncode)
    return int(process.returncode or 0), output


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()
