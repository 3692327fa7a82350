from redgreen.backends.base import AgentBackend, BackendEventHook
from redgreen.backends.claude import ClaudeCodeBackend
from redgreen.backends.codex import CodexBackend
from redgreen.backends.resilient import ResilientBackend, RetryPolicy

__all__ = [
    "AgentBackend",
    "BackendEventHook",
    "ClaudeCodeBackend",
    "CodexBackend",
    "ResilientBackend",
    "RetryPolicy",
]
