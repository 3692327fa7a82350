from __future__ import annotations

import logging
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from redgreen.errors import VersionControlError

logger = logging.getLogger(__name__)


class VersionControl(ABC):
    @abstractmethod
    def stage(self, paths: list[str]) -> None:
        """Stage ``paths`` (relative to the repository root)."""

    @abstractmethod
    def commit(self, message: str) -> str:
        """Commit the staged changes and return the new revision id."""

    @abstractmethod
    def current_revision(self) -> str:
        """Return the revision id of HEAD."""

    @abstractmethod
    def create_branch(self, name: str) -> None:
        """Create ``name`` from HEAD and check it out."""

    @abstractmethod
    def soft_reset_last(self) -> None:
        """Undo the last commit, keeping its changes staged."""


class GitRepository(VersionControl):
    def __init__(self, repo_root: Path, *, binary: str = "git") -> None:
        self.repo_root = repo_root.resolve()
        self.binary = binary

    def _run_git(self, args: list[str], check: bool = True) -> subprocess.CompletedProcess[str]:
        try:
            proc = subprocess.run(
                [self.binary, "--no-pager", *args],
                cwd=self.repo_root,
                text=True,
                capture_output=True,
            )
        except OSError as exc:
            raise VersionControlError(f"cannot run {self.binary}: {exc}") from exc
        if check and proc.returncode != 0:
            raise VersionControlError(
                f"git {args[0]} failed: {proc.stderr.strip() or proc.stdout.strip()}"
            )
        return proc

    def is_repository(self) -> bool:
        proc = self._run_git(["rev-parse", "--is-inside-work-tree"], check=False)
        return proc.returncode == 0 and proc.stdout.strip() == "true"

    def stage(self, paths: list[str]) -> None:
        if not paths:
            return
        self._run_git(["add", "--", *paths])

    def commit(self, message: str) -> str:
        self._run_git(["commit", "-m", message])
        revision = self.current_revision()
        logger.info("Committed %s: %s", revision[:10], message)
        return revision

    def current_revision(self) -> str:
        return self._run_git(["rev-parse", "HEAD"]).stdout.strip()

    def current_branch(self) -> str:
        return self._run_git(["rev-parse", "--abbrev-ref", "HEAD"]).stdout.strip()

    def create_branch(self, name: str) -> None:
        self._run_git(["checkout", "-B", name])

    def soft_reset_last(self) -> None:
        self._run_git(["reset", "--soft", "HEAD~1"])
