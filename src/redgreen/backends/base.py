from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from asyncio.subprocess import Process
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any

from redgreen.errors import BackendExecutionError, BackendProcessError

BackendEventHook = Callable[[dict[str, Any]], None]

STREAM_LIMIT = 16 * 1024 * 1024


def appears_partial_json(raw: str) -> bool:
    return raw.count("{") > raw.count("}") or raw.count("[") > raw.count("]")


def render_context(user_prompt: str, context: dict[str, Any]) -> str:
    visible = {
        key: value
        for key, value in context.items()
        if not key.startswith("_") and key != "model"
    }
    if not visible:
        return user_prompt
    return (
        f"{user_prompt}\n\nContext JSON:\n"
        f"{json.dumps(visible, ensure_ascii=False, indent=2)}"
    )


def requested_model(context: dict[str, Any]) -> str | None:
    model = context.get("model")
    if isinstance(model, str) and model.strip():
        return model.strip()
    return None


async def spawn(command: list[str], *, cwd: Path | None, backend: str) -> Process:
    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd) if cwd else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
    except FileNotFoundError as exc:
        raise BackendProcessError(
            f"{backend} binary not found: {command[0]}", backend=backend, retriable=False
        ) from exc
    if process.stdout is None:
        raise BackendProcessError(
            f"{backend} backend did not expose stdout.", backend=backend, retriable=False
        )
    return process


async def _read_lines(process: Process, backend: str) -> AsyncIterator[bytes]:
    assert process.stdout is not None
    lines = aiter(process.stdout)
    while True:
        try:
            raw_line = await anext(lines)
        except StopAsyncIteration:
            return
        except (ValueError, asyncio.LimitOverrunError) as exc:
            raise BackendProcessError(
                f"{backend} backend output could not be read: {exc}",
                backend=backend,
                retriable=True,
            ) from exc
        yield raw_line


async def iter_json_lines(
    process: Process, *, backend: str = "agent"
) -> AsyncIterator[tuple[dict[str, Any] | None, str]]:
    """Yield ``(event, line)`` pairs; ``event`` is ``None`` for lines that are not JSON.

    Objects split across several lines are buffered until they parse. A line longer than
    the stream limit surfaces as a retriable ``BackendProcessError``.
    """
    parse_buffer = ""
    async for raw_line in _read_lines(process, backend):
        line = raw_line.decode("utf-8", errors="replace").strip()
        if not line:
            continue
        candidate = f"{parse_buffer}{line}" if parse_buffer else line
        try:
            event = json.loads(candidate)
        except json.JSONDecodeError:
            if appears_partial_json(candidate):
                parse_buffer = candidate
                continue
            parse_buffer = ""
            yield None, line
            continue
        parse_buffer = ""
        yield (event if isinstance(event, dict) else None), candidate
    if parse_buffer:
        yield None, parse_buffer


async def terminate(process: Process) -> None:
    """Kill ``process`` if it is still running and reap it."""
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        pass
    await process.wait()


async def wait_for_exit(process: Process, *, backend: str) -> None:
    return_code = await process.wait()
    if return_code == 0:
        return
    stderr_output = ""
    if process.stderr is not None:
        stderr_output = (await process.stderr.read()).decode("utf-8", errors="replace").strip()
    raise BackendExecutionError(
        f"{backend} backend failed with exit code {return_code}: {stderr_output[:400]}",
        backend=backend,
        exit_code=return_code,
        retriable=True,
    )


class AgentBackend(ABC):
    @abstractmethod
    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        """Execute an agent and stream textual chunks."""
