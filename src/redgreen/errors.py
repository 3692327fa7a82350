from __future__ import annotations


class RedGreenError(RuntimeError):
    """Base class for every error raised by redgreen."""


class AgentError(RedGreenError):
    """Raised when the generation agent fails or returns an unusable response."""


class BackendExecutionError(AgentError):
    """Raised when an agent backend process execution fails."""

    def __init__(
        self,
        message: str,
        *,
        backend: str | None = None,
        exit_code: int | None = None,
        retriable: bool = True,
    ) -> None:
        super().__init__(message)
        self.backend = backend
        self.exit_code = exit_code
        self.retriable = retriable


class BackendTimeoutError(BackendExecutionError):
    """Raised when backend execution exceeds the configured timeout."""


class BackendProcessError(BackendExecutionError):
    """Raised when the backend process cannot be started or read."""


class PatchError(RedGreenError):
    """Raised when generated files cannot be written into the working tree."""


class PathTraversalError(PatchError):
    """Raised when a generated path resolves outside the repository root."""


class WriteError(PatchError):
    """Raised when the filesystem rejects a write."""


class VerificationInfrastructureError(RedGreenError):
    """Raised when a test command could not be run at all."""


class TestTimeoutError(VerificationInfrastructureError):
    """Raised when a test command exceeds its deadline."""

    __test__ = False


class VersionControlError(RedGreenError):
    """Raised when a git operation fails."""


class TrackerError(RedGreenError):
    """Raised for illegal progress tracker operations."""


class InvalidTransition(TrackerError):
    """Raised when a task cannot move to the requested status."""


class UnknownTask(TrackerError):
    """Raised when a task id is not tracked."""


class PlanParseError(RedGreenError):
    """Raised when a plan document has no phases or no tasks."""


class SpecReadError(RedGreenError):
    """Raised when the specification document is missing or empty."""


class ConfigError(RedGreenError):
    """Raised when the configuration file is invalid."""
