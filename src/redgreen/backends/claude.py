from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from redgreen.backends.base import (
    AgentBackend,
    iter_json_lines,
    render_context,
    requested_model,
    spawn,
    terminate,
    wait_for_exit,
)

logger = logging.getLogger(__name__)


class ClaudeCodeBackend(AgentBackend):
    def __init__(self, binary: str = "claude", working_directory: Path | None = None) -> None:
        self.binary = binary
        self.working_directory = working_directory

    def build_command(
        self, system_prompt: str, user_prompt: str, model: str | None = None
    ) -> list[str]:
        command = [
            self.binary,
            "-p",
            user_prompt,
            "--output-format",
            "stream-json",
            "--verbose",
            "--append-system-prompt",
            system_prompt,
        ]
        if model:
            command.extend(["--model", model])
        return command

    @staticmethod
    def _extract_content(event: dict[str, Any]) -> str:
        # Only the final result event; assistant events repeat the same text.
        if event.get("type") == "result":
            result = event.get("result")
            return result if isinstance(result, str) else ""
        delta = event.get("delta")
        if isinstance(delta, str):
            return delta
        return ""

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        command = self.build_command(
            system_prompt, render_context(user_prompt, context), requested_model(context)
        )
        logger.debug("Starting claude backend in %s", self.working_directory or ".")
        process = await spawn(command, cwd=self.working_directory, backend="claude")
        try:
            async for event, line in iter_json_lines(process, backend="claude"):
                if event is None:
                    yield line
                    continue
                content = self._extract_content(event)
                if content:
                    yield content
            await wait_for_exit(process, backend="claude")
        finally:
            await terminate(process)
