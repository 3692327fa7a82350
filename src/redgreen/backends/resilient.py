from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from redgreen.backends.base import AgentBackend, BackendEventHook
from redgreen.errors import BackendExecutionError, BackendTimeoutError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RetryPolicy:
    max_retries: int = 1
    backoff_seconds: float = 0.5
    timeout_seconds: float = 300.0


class ResilientBackend(AgentBackend):
    """Wraps primary/fallback backends with timeout, retry, and failover."""

    def __init__(
        self,
        primary_name: str,
        primary_backend: AgentBackend,
        fallback_name: str,
        fallback_backend: AgentBackend,
        retry_policy: RetryPolicy,
        event_hook: BackendEventHook | None = None,
    ) -> None:
        self.primary_name = primary_name
        self.primary_backend = primary_backend
        self.fallback_name = fallback_name
        self.fallback_backend = fallback_backend
        self.retry_policy = retry_policy
        self.event_hook = event_hook

    def _emit(self, event: dict[str, Any]) -> None:
        if self.event_hook:
            self.event_hook(event)

    async def _collect(
        self,
        backend: AgentBackend,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> list[str]:
        async def _consume() -> list[str]:
            return [
                chunk async for chunk in backend.execute(system_prompt, user_prompt, context)
            ]

        try:
            return await asyncio.wait_for(_consume(), timeout=self.retry_policy.timeout_seconds)
        except TimeoutError as exc:
            raise BackendTimeoutError(
                f"Backend request timed out after {self.retry_policy.timeout_seconds:.1f}s",
                retriable=True,
            ) from exc

    def _attempt_plan(self) -> list[tuple[str, AgentBackend]]:
        attempts = [(self.primary_name, self.primary_backend)]
        if self.fallback_name != self.primary_name:
            attempts.append((self.fallback_name, self.fallback_backend))
        return attempts

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        errors: list[str] = []
        for position, (backend_name, backend) in enumerate(self._attempt_plan()):
            if position > 0:
                self._emit({"event": "backend_failover_start", "backend": backend_name})
            for attempt in range(self.retry_policy.max_retries + 1):
                if attempt > 0:
                    delay = self.retry_policy.backoff_seconds * (2 ** (attempt - 1))
                    self._emit(
                        {
                            "event": "backend_retry",
                            "backend": backend_name,
                            "attempt": attempt,
                            "delay_seconds": delay,
                        }
                    )
                    await asyncio.sleep(delay)
                try:
                    chunks = await self._collect(backend, system_prompt, user_prompt, context)
                except BackendExecutionError as exc:
                    errors.append(f"{backend_name}[{attempt}]: {exc}")
                    logger.warning("Backend %s attempt %d failed: %s", backend_name, attempt, exc)
                    self._emit(
                        {
                            "event": "backend_attempt_failed",
                            "backend": backend_name,
                            "attempt": attempt,
                            "error": str(exc),
                            "retriable": exc.retriable,
                        }
                    )
                    if not exc.retriable:
                        break
                    continue

                if position > 0:
                    self._emit(
                        {
                            "event": "backend_fallback_success",
                            "backend": backend_name,
                            "attempt": attempt,
                        }
                    )
                for chunk in chunks:
                    yield chunk
                return

        summary = "; ".join(errors[-6:])
        raise BackendExecutionError(f"All backend attempts failed. {summary}", retriable=False)
