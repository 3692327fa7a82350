import subprocess
from pathlib import Path

import pytest

from redgreen.errors import VersionControlError
from redgreen.vcs import GitRepository


def _run(cmd: list[str], cwd: Path) -> str:
    proc = subprocess.run(cmd, cwd=cwd, check=True, text=True, capture_output=True)
    return proc.stdout.strip()


def _init_repo(repo: Path) -> None:
    _run(["git", "init"], cwd=repo)
    _run(["git", "config", "user.email", "test@example.com"], cwd=repo)
    _run(["git", "config", "user.name", "Test User"], cwd=repo)
    (repo / "README.md").write_text("init\n", encoding="utf-8")
    _run(["git", "add", "README.md"], cwd=repo)
    _run(["git", "commit", "-m", "initial"], cwd=repo)


def test_stage_and_commit_return_new_revision(tmp_path: Path) -> None:
    _init_repo(tmp_path)
    repo = GitRepository(tmp_path)
    before = repo.current_revision()

    (tmp_path / "pkg").mkdir()
    (tmp_path / "pkg" / "mod.py").write_text("x = 1\n", encoding="utf-8")
    repo.stage(["pkg/mod.py"])
    sha = repo.commit("feat: add module")

    assert sha != before
    assert sha == _run(["git", "rev-parse", "HEAD"], cwd=tmp_path)
    assert _run(["git", "log", "-1", "--pretty=%s"], cwd=tmp_path) == "feat: add module"


def test_create_branch_and_soft_reset(tmp_path: Path) -> None:
    _init_repo(tmp_path)
    repo = GitRepository(tmp_path)
    base = repo.current_revision()

    repo.create_branch("redgreen/work")
    assert repo.current_branch() == "redgreen/work"

    (tmp_path / "a.txt").write_text("a\n", encoding="utf-8")
    repo.stage(["a.txt"])
    repo.commit("feat: a")
    repo.soft_reset_last()

    assert repo.current_revision() == base
    assert "A  a.txt" in _run(["git", "status", "--porcelain"], cwd=tmp_path)


def test_stage_empty_list_is_noop(tmp_path: Path) -> None:
    _init_repo(tmp_path)

    GitRepository(tmp_path).stage([])


def test_failures_raise_version_control_error(tmp_path: Path) -> None:
    repo = GitRepository(tmp_path)

    assert not repo.is_repository()
    with pytest.raises(VersionControlError):
        repo.current_revision()
    with pytest.raises(VersionControlError):
        GitRepository(tmp_path, binary="definitely-not-git").current_revision()
