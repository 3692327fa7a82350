import asyncio
import subprocess
from pathlib import Path

import pytest

from redgreen.errors import (
    AgentError,
    VerificationInfrastructureError,
    VersionControlError,
    WriteError,
)
from redgreen.generation import CodeGenRequest, GenerationAgent
from redgreen.plan import PlanTask
from redgreen.tdd.loop import TaskLoopOptions, TaskOutcome, execute_task
from redgreen.tdd.patches import FilePatch, TestArtifact
from redgreen.tdd.runner import ScopedRun, SuiteRun, TestRunner
from redgreen.vcs import GitRepository, VersionControl

TEST_PATH = "tests/test_widget.py"
TEST_CONTENT = "from widget import make\n\ndef test_make():\n    assert make() == 42\n"
IMPL = FilePatch("widget.py", "def make():\n    return 42\n")


class ScriptedAgent(GenerationAgent):
    def __init__(
        self,
        impl_rounds: list[list[FilePatch]] | None = None,
        *,
        test_error: Exception | None = None,
    ) -> None:
        self.impl_rounds = list(impl_rounds or [])
        self.test_error = test_error
        self.test_requests: list[CodeGenRequest] = []
        self.impl_calls: list[tuple[str, str]] = []

    async def generate_test(self, request: CodeGenRequest) -> TestArtifact:
        self.test_requests.append(request)
        if self.test_error is not None:
            raise self.test_error
        return TestArtifact(test_path=TEST_PATH, test_content=TEST_CONTENT)

    async def generate_impl(
        self, request: CodeGenRequest, failing_test: str, test_output: str = ""
    ) -> list[FilePatch]:
        _ = request
        self.impl_calls.append((failing_test, test_output))
        return self.impl_rounds.pop(0)


class WorkspaceRunner(TestRunner):
    """Scoped test passes once ``widget.py`` returns 42; the suite fails if ``broken.py`` exists."""

    def __init__(self, *, compile_error: bool = False, scoped_error: bool = False) -> None:
        self.compile_error = compile_error
        self.scoped_error = scoped_error
        self.suite_runs = 0

    async def run_scoped(self, root: Path, test_path: Path) -> ScopedRun:
        assert test_path.is_file()
        if self.scoped_error:
            raise VerificationInfrastructureError("runner unavailable")
        if self.compile_error:
            return ScopedRun(passed=False, compile_error=True, output="SyntaxError: bad")
        widget = root / "widget.py"
        passed = widget.is_file() and "return 42" in widget.read_text(encoding="utf-8")
        return ScopedRun(
            passed=passed, compile_error=False, output="1 passed" if passed else "assert None == 42"
        )

    async def run_suite(self, root: Path, command: str) -> SuiteRun:
        _ = command
        self.suite_runs += 1
        if (root / "broken.py").exists():
            return SuiteRun(passed=False, output="FAILED", failed_tests=["test_other"])
        return SuiteRun(passed=True, output="all passed")


class RecordingVCS(VersionControl):
    def __init__(self, *, commit_error: bool = False) -> None:
        self.commit_error = commit_error
        self.staged: list[str] = []
        self.messages: list[str] = []

    def stage(self, paths: list[str]) -> None:
        self.staged.extend(paths)

    def commit(self, message: str) -> str:
        if self.commit_error:
            raise VersionControlError("nothing to commit")
        self.messages.append(message)
        return "c0ffee" * 6 + "abcd"

    def current_revision(self) -> str:
        return "base"

    def create_branch(self, name: str) -> None:
        _ = name

    def soft_reset_last(self) -> None:
        return None


def _options(
    root: Path,
    agent: GenerationAgent,
    runner: TestRunner | None = None,
    vcs: VersionControl | None = None,
    **overrides: object,
) -> TaskLoopOptions:
    task = PlanTask(id="1.1", description="Add widget factory", phase="Core", files=("widget.py",))
    return TaskLoopOptions(
        repo_dir=root,
        task=task,
        agent=agent,
        runner=runner or WorkspaceRunner(),
        vcs=vcs or RecordingVCS(),
        test_command="pytest -q",
        spec_context="# Widget spec",
        **overrides,
    )


def _git(cmd: list[str], cwd: Path) -> str:
    proc = subprocess.run(["git", *cmd], cwd=cwd, check=True, text=True, capture_output=True)
    return proc.stdout.strip()


def test_empty_patch_then_fix_commits_on_second_attempt(tmp_path: Path) -> None:
    _git(["init"], tmp_path)
    _git(["config", "user.email", "test@example.com"], tmp_path)
    _git(["config", "user.name", "Test User"], tmp_path)
    (tmp_path / "README.md").write_text("init\n", encoding="utf-8")
    _git(["add", "README.md"], tmp_path)
    _git(["commit", "-m", "initial"], tmp_path)
    agent = ScriptedAgent([[], [IMPL]])

    result = asyncio.run(
        execute_task(_options(tmp_path, agent, vcs=GitRepository(tmp_path), max_retries=2))
    )

    assert result.status is TaskOutcome.COMMITTED
    assert result.commit_sha
    assert result.commit_sha == _git(["rev-parse", "HEAD"], tmp_path)
    assert result.attempts == 2
    assert result.test_file == TEST_PATH
    assert result.files_changed == ["widget.py"]
    assert result.reason == ""
    assert _git(["log", "-1", "--pretty=%s"], tmp_path) == "feat: Add widget factory"
    assert set(_git(["show", "--name-only", "--pretty="], tmp_path).split()) == {
        "widget.py",
        TEST_PATH,
    }
    assert agent.impl_calls[0] == (TEST_CONTENT, "assert None == 42")
    assert agent.impl_calls[1] == (TEST_CONTENT, "assert None == 42")


def test_request_carries_task_context(tmp_path: Path) -> None:
    agent = ScriptedAgent([[IMPL]])

    asyncio.run(execute_task(_options(tmp_path, agent)))

    request = agent.test_requests[0]
    assert request.task_description == "Add widget factory"
    assert request.spec_context == "# Widget spec"
    assert request.repo_dir == str(tmp_path)
    assert request.target_files == ["widget.py"]
    assert request.prior_context == ""


def test_prior_context_reaches_generation_request(tmp_path: Path) -> None:
    agent = ScriptedAgent([[IMPL]])
    done = "Completed tasks:\n- 1.0: Scaffold project"

    asyncio.run(execute_task(_options(tmp_path, agent, prior_context=done)))

    assert agent.test_requests[0].prior_context == done


def test_agent_error_fails_task(tmp_path: Path) -> None:
    agent = ScriptedAgent(test_error=AgentError("backend down"))

    result = asyncio.run(execute_task(_options(tmp_path, agent)))

    assert result.status is TaskOutcome.FAILED
    assert result.reason == "agent_error: backend down"
    assert result.attempts == 0


def test_test_that_already_passes_is_skipped(tmp_path: Path) -> None:
    widget = tmp_path / "widget.py"
    widget.write_text(IMPL.content, encoding="utf-8")
    agent = ScriptedAgent()

    result = asyncio.run(execute_task(_options(tmp_path, agent)))

    assert result.status is TaskOutcome.SKIPPED
    assert result.reason == "already_satisfied: test already passes"
    assert agent.impl_calls == []


def test_red_compile_error_fails_task(tmp_path: Path) -> None:
    result = asyncio.run(
        execute_task(_options(tmp_path, ScriptedAgent(), WorkspaceRunner(compile_error=True)))
    )

    assert result.status is TaskOutcome.FAILED
    assert result.reason.startswith("red_verify: compilation error:")


def test_red_infrastructure_error_fails_task(tmp_path: Path) -> None:
    result = asyncio.run(
        execute_task(_options(tmp_path, ScriptedAgent(), WorkspaceRunner(scoped_error=True)))
    )

    assert result.status is TaskOutcome.FAILED
    assert result.reason == "red_verify_error: runner unavailable"


def test_path_traversal_patch_fails_task(tmp_path: Path) -> None:
    root = tmp_path / "repo"
    root.mkdir()
    agent = ScriptedAgent([[FilePatch("../outside.py", "x = 1\n")]])

    result = asyncio.run(execute_task(_options(root, agent)))

    assert result.status is TaskOutcome.FAILED
    assert result.reason.startswith("patch_error:")
    assert "outside repo" in result.reason
    assert not (tmp_path / "outside.py").exists()


def test_green_failures_exhaust_retries_and_revert(tmp_path: Path) -> None:
    wrong = FilePatch("widget.py", "def make():\n    return 0\n")
    agent = ScriptedAgent([[wrong], [wrong], [wrong]])
    vcs = RecordingVCS()

    result = asyncio.run(execute_task(_options(tmp_path, agent, vcs=vcs, max_retries=2)))

    assert result.status is TaskOutcome.FAILED
    assert result.reason == "green_failed_after_retries"
    assert result.attempts == 3
    assert not (tmp_path / "widget.py").exists()
    assert vcs.messages == []
    assert agent.impl_calls[-1][1] == "assert None == 42"


def test_revert_failure_fails_task(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def broken_revert(root: Path, paths: list[str], snapshot: object = None) -> None:
        _ = root, snapshot
        raise WriteError(f"cannot remove {paths[0]}: read-only file system")

    monkeypatch.setattr("redgreen.tdd.loop.revert_files", broken_revert)
    wrong = FilePatch("widget.py", "def make():\n    return 0\n")
    agent = ScriptedAgent([[wrong], [IMPL]])

    result = asyncio.run(execute_task(_options(tmp_path, agent, max_retries=1)))

    assert result.status is TaskOutcome.FAILED
    assert result.reason == "revert_error: cannot remove widget.py: read-only file system"
    assert result.attempts == 1


def test_regression_reverts_and_retries(tmp_path: Path) -> None:
    breaking = [IMPL, FilePatch("broken.py", "raise SystemExit\n")]
    agent = ScriptedAgent([breaking, [IMPL]])
    runner = WorkspaceRunner()
    vcs = RecordingVCS()

    result = asyncio.run(execute_task(_options(tmp_path, agent, runner, vcs, max_retries=1)))

    assert result.status is TaskOutcome.COMMITTED
    assert result.attempts == 2
    assert runner.suite_runs == 2
    assert not (tmp_path / "broken.py").exists()
    assert agent.impl_calls[1][1] == "FAILED"
    assert vcs.staged == ["widget.py", TEST_PATH]
    assert vcs.messages == ["feat: Add widget factory"]


def test_regression_on_last_attempt_fails(tmp_path: Path) -> None:
    breaking = [IMPL, FilePatch("broken.py", "raise SystemExit\n")]
    agent = ScriptedAgent([breaking])

    result = asyncio.run(execute_task(_options(tmp_path, agent, max_retries=0)))

    assert result.status is TaskOutcome.FAILED
    assert result.reason == "regression_after_retries"
    assert result.attempts == 1
    assert not (tmp_path / "widget.py").exists()


def test_commit_error_fails_task(tmp_path: Path) -> None:
    agent = ScriptedAgent([[IMPL]])

    result = asyncio.run(
        execute_task(_options(tmp_path, agent, vcs=RecordingVCS(commit_error=True)))
    )

    assert result.status is TaskOutcome.FAILED
    assert result.reason == "commit_error: nothing to commit"


@pytest.mark.parametrize(("restore", "expected"), [(False, None), (True, "KEEP = True\n")])
def test_revert_mode_for_preexisting_files(
    tmp_path: Path, restore: bool, expected: str | None
) -> None:
    (tmp_path / "helpers.py").write_text("KEEP = True\n", encoding="utf-8")
    agent = ScriptedAgent([[FilePatch("helpers.py", "KEEP = False\n")]])

    result = asyncio.run(
        execute_task(_options(tmp_path, agent, max_retries=0, restore_on_revert=restore))
    )

    helpers = tmp_path / "helpers.py"
    assert result.reason == "green_failed_after_retries"
    if expected is None:
        assert not helpers.exists()
    else:
        assert helpers.read_text(encoding="utf-8") == expected


def test_events_are_emitted(tmp_path: Path) -> None:
    events: list[dict[str, object]] = []
    agent = ScriptedAgent([[IMPL]])

    asyncio.run(execute_task(_options(tmp_path, agent, event_hook=events.append)))

    names = [event["event"] for event in events]
    assert names[0] == "task.red_start"
    assert "task.red_confirmed" in names
    assert names[-1] == "task.finished"
    assert all(event["task_id"] == "1.1" for event in events)
