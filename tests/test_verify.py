import asyncio
from pathlib import Path

from redgreen.tdd.runner import ScopedRun, SuiteRun, TestRunner
from redgreen.tdd.verify import check_regression, verify_green, verify_red


class ScriptedRunner(TestRunner):
    def __init__(self, scoped: list[ScopedRun], suite: SuiteRun | None = None) -> None:
        self.scoped = list(scoped)
        self.suite = suite or SuiteRun(passed=True, output="ok")
        self.scoped_calls: list[Path] = []
        self.suite_calls: list[str] = []

    async def run_scoped(self, root: Path, test_path: Path) -> ScopedRun:
        _ = root
        self.scoped_calls.append(test_path)
        return self.scoped.pop(0)

    async def run_suite(self, root: Path, command: str) -> SuiteRun:
        _ = root
        self.suite_calls.append(command)
        return self.suite


def test_red_confirmed_for_logical_failure(tmp_path: Path) -> None:
    runner = ScriptedRunner([ScopedRun(passed=False, compile_error=False, output="assert 1 == 2")])

    result = asyncio.run(verify_red(runner, tmp_path, tmp_path / "test_a.py"))

    assert result.confirmed
    assert result.output == "assert 1 == 2"


def test_red_not_confirmed_when_test_already_passes(tmp_path: Path) -> None:
    runner = ScriptedRunner([ScopedRun(passed=True, compile_error=False, output="1 passed")])

    result = asyncio.run(verify_red(runner, tmp_path, tmp_path / "test_a.py"))

    assert not result.confirmed
    assert "already passes" in result.reason
    assert not result.compile_error


def test_red_not_confirmed_on_compile_error(tmp_path: Path) -> None:
    output = "collecting\nE   SyntaxError: invalid syntax\n"
    runner = ScriptedRunner([ScopedRun(passed=False, compile_error=True, output=output)])

    result = asyncio.run(verify_red(runner, tmp_path, tmp_path / "test_a.py"))

    assert not result.confirmed
    assert result.compile_error
    assert result.reason == "compilation error: E   SyntaxError: invalid syntax"


def test_green_keeps_compile_flag(tmp_path: Path) -> None:
    runner = ScriptedRunner(
        [
            ScopedRun(passed=False, compile_error=True, output="undefined: Widget"),
            ScopedRun(passed=True, compile_error=False, output="ok"),
        ]
    )

    first = asyncio.run(verify_green(runner, tmp_path, tmp_path / "test_a.py"))
    second = asyncio.run(verify_green(runner, tmp_path, tmp_path / "test_a.py"))

    assert not first.confirmed and first.compile_error
    assert second.confirmed


def test_regression_reports_failed_tests(tmp_path: Path) -> None:
    runner = ScriptedRunner(
        [], suite=SuiteRun(passed=False, output="boom", failed_tests=["test_x.py::test_y"])
    )

    result = asyncio.run(check_regression(runner, tmp_path, "make test"))

    assert not result.clean
    assert result.failed_tests == ["test_x.py::test_y"]
    assert runner.suite_calls == ["make test"]
