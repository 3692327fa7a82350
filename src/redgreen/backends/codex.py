from __future__ import annotations

import json
from collections.abc import AsyncIterator
from pathlib import Path
from typing import Any

from redgreen.backends.base import (
    AgentBackend,
    BackendEventHook,
    iter_json_lines,
    render_context,
    requested_model,
    spawn,
    terminate,
    wait_for_exit,
)
from redgreen.errors import BackendExecutionError


class CodexBackend(AgentBackend):
    def __init__(
        self,
        binary: str = "codex",
        working_directory: Path | None = None,
        event_hook: BackendEventHook | None = None,
    ) -> None:
        self.binary = binary
        self.working_directory = working_directory
        self.event_hook = event_hook

    def _emit(self, payload: dict[str, Any]) -> None:
        if self.event_hook is not None:
            self.event_hook(payload)

    def build_command(
        self, system_prompt: str, user_prompt: str, context: dict[str, Any]
    ) -> list[str]:
        command = [
            self.binary,
            "exec",
            "--json",
            "-c",
            f"instructions={json.dumps(system_prompt, ensure_ascii=False)}",
        ]
        model = requested_model(context)
        if model:
            command.extend(["-m", model])
        command.append(render_context(user_prompt, context))
        return command

    @staticmethod
    def _extract_content(event: dict[str, Any]) -> str:
        item = event.get("item")
        if isinstance(item, dict) and item.get("type") == "agent_message":
            text = item.get("text")
            if isinstance(text, str):
                return text

        content = event.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "".join(
                part["text"]
                for part in content
                if isinstance(part, dict) and isinstance(part.get("text"), str)
            )

        message = event.get("message")
        if isinstance(message, str):
            return message
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return message["content"]
        return ""

    async def execute(
        self,
        system_prompt: str,
        user_prompt: str,
        context: dict[str, Any],
    ) -> AsyncIterator[str]:
        command = self.build_command(system_prompt, user_prompt, context)
        self._emit(
            {
                "event": "codex_cli_start",
                "command": command[:2],
                "model": requested_model(context),
            }
        )
        process = await spawn(command, cwd=self.working_directory, backend="codex")
        try:
            async for event, line in iter_json_lines(process, backend="codex"):
                if event is None:
                    self._emit({"event": "codex_json_parse_fallback", "line": line[:200]})
                    continue
                content = self._extract_content(event)
                self._emit(
                    {
                        "event": "codex_json_event",
                        "type": str(event.get("type", "")),
                        "has_content": bool(content),
                    }
                )
                if content:
                    yield content

            try:
                await wait_for_exit(process, backend="codex")
            except BackendExecutionError as exc:
                self._emit({"event": "codex_cli_exit", "exit_code": exc.exit_code})
                raise
            self._emit({"event": "codex_cli_exit", "exit_code": 0})
        finally:
            await terminate(process)
