from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from redgreen.tdd.runner import TestRunner, first_error_line

ALREADY_PASSES = "test already passes"


@dataclass(slots=True)
class RedResult:
    confirmed: bool
    reason: str = ""
    output: str = ""
    compile_error: bool = False


@dataclass(slots=True)
class GreenResult:
    confirmed: bool
    output: str = ""
    compile_error: bool = False


@dataclass(slots=True)
class RegressionResult:
    clean: bool
    output: str = ""
    failed_tests: list[str] = field(default_factory=list)


async def verify_red(runner: TestRunner, root: Path, test_path: Path) -> RedResult:
    """Confirm that a freshly written test fails for a logical reason, not a build error."""
    run = await runner.run_scoped(root, test_path)
    if run.passed:
        return RedResult(confirmed=False, reason=ALREADY_PASSES, output=run.output)
    if run.compile_error:
        return RedResult(
            confirmed=False,
            reason=f"compilation error: {first_error_line(run.output)}",
            output=run.output,
            compile_error=True,
        )
    return RedResult(confirmed=True, output=run.output)


async def verify_green(runner: TestRunner, root: Path, test_path: Path) -> GreenResult:
    run = await runner.run_scoped(root, test_path)
    return GreenResult(confirmed=run.passed, output=run.output, compile_error=run.compile_error)


async def check_regression(runner: TestRunner, root: Path, command: str) -> RegressionResult:
    suite = await runner.run_suite(root, command)
    return RegressionResult(
        clean=suite.passed, output=suite.output, failed_tests=list(suite.failed_tests)
    )
