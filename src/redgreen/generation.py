"""The code-generation agent as seen by the task loop.

``GenerationAgent`` is the capability the loop depends on. ``BackendGenerationAgent``
implements it on top of an agent CLI backend: it renders a prompt, runs the matching
specialist, and parses the JSON object the agent is asked to answer with.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from redgreen.agents import ImplementerAgent, TestWriterAgent
from redgreen.backends.base import AgentBackend
from redgreen.errors import AgentError
from redgreen.tdd.patches import FilePatch, TestArtifact

JSON_BLOCK_PATTERN = re.compile(r"```json\s*\n(.+?)\n```", re.DOTALL)


@dataclass(slots=True)
class CodeGenRequest:
    task_description: str
    spec_context: str = ""
    repo_dir: str = ""
    target_files: list[str] = field(default_factory=list)
    prior_context: str = ""
    language: str = "python"


class GenerationAgent(ABC):
    @abstractmethod
    async def generate_test(self, request: CodeGenRequest) -> TestArtifact:
        """Produce a test that should fail against the current tree."""

    @abstractmethod
    async def generate_impl(
        self, request: CodeGenRequest, failing_test: str, test_output: str = ""
    ) -> list[FilePatch]:
        """Produce whole-file patches that should make ``failing_test`` pass."""


def _section(title: str, body: str) -> str:
    return f"## {title}\n\n{body.strip()}\n\n"


def _file_list(files: list[str]) -> str:
    return "\n".join(f"- {path}" for path in files)


def build_test_prompt(request: CodeGenRequest) -> str:
    parts = [
        "# Task: Write a Failing Test\n\n",
        _section("Task Description", request.task_description),
    ]
    if request.spec_context:
        parts.append(_section("Specification Context", request.spec_context))
    if request.target_files:
        parts.append(_section("Target Files", _file_list(request.target_files)))
    if request.prior_context:
        parts.append(_section("Prior Context", request.prior_context))
    parts.append(
        _section(
            "Instructions",
            f"Write a {request.language} test file that:\n"
            "1. Tests the behavior described in the task description.\n"
            "2. MUST FAIL against the current codebase (red phase).\n"
            "3. Fails on an assertion or a missing name, never on a syntax error.\n"
            "4. Covers the happy path and key edge cases.",
        )
    )
    parts.append(
        _section(
            "Output Format",
            "Respond with ONLY a JSON object:\n"
            "```json\n"
            "{\n"
            '  "test_file_path": "<relative path from repo root>",\n'
            '  "test_content": "<full test file content>",\n'
            '  "package_name": "<package or module name>"\n'
            "}\n"
            "```",
        )
    )
    return "".join(parts).rstrip() + "\n"


def build_impl_prompt(request: CodeGenRequest, failing_test: str, test_output: str = "") -> str:
    parts = [
        "# Task: Write Implementation Code\n\n",
        _section("Task Description", request.task_description),
    ]
    if request.spec_context:
        parts.append(_section("Specification Context", request.spec_context))
    parts.append(_section("Failing Test", f"```\n{failing_test}\n```"))
    if test_output:
        parts.append(_section("Test Output (Failure)", f"```\n{test_output[-4000:]}\n```"))
    if request.target_files:
        parts.append(_section("Target Files", _file_list(request.target_files)))
    if request.prior_context:
        parts.append(_section("Prior Context", request.prior_context))
    parts.append(
        _section(
            "Instructions",
            f"Write the MINIMUM {request.language} code to make the failing test pass.\n"
            "- DO NOT modify the test file.\n"
            "- DO NOT add functionality beyond what the test requires.\n"
            "- Create new files or modify existing files as needed.",
        )
    )
    parts.append(
        _section(
            "Output Format",
            "Respond with ONLY a JSON object:\n"
            "```json\n"
            '{\n  "patches": [\n'
            '    {"path": "<relative path from repo root>", "content": "<full file content>"}\n'
            "  ]\n}\n"
            "```",
        )
    )
    return "".join(parts).rstrip() + "\n"


def extract_json(raw_text: str) -> Any:
    match = JSON_BLOCK_PATTERN.search(raw_text)
    candidate = match.group(1) if match else raw_text.strip()
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        raise AgentError(f"agent response is not valid JSON: {exc}") from exc


def parse_test_response(raw_text: str) -> TestArtifact:
    payload = extract_json(raw_text)
    if not isinstance(payload, dict):
        raise AgentError("test generation response must be a JSON object")
    test_path = payload.get("test_file_path")
    test_content = payload.get("test_content")
    if not isinstance(test_path, str) or not test_path.strip():
        raise AgentError("test generation response is missing test_file_path")
    if not isinstance(test_content, str):
        raise AgentError("test generation response is missing test_content")
    return TestArtifact(
        test_path=test_path.strip(),
        test_content=test_content,
        package_name=str(payload.get("package_name") or ""),
    )


def parse_impl_response(raw_text: str) -> list[FilePatch]:
    payload = extract_json(raw_text)
    patches = payload.get("patches") if isinstance(payload, dict) else None
    if not isinstance(patches, list):
        raise AgentError("implementation response is missing a patches list")
    parsed: list[FilePatch] = []
    for item in patches:
        if (
            not isinstance(item, dict)
            or not isinstance(item.get("path"), str)
            or not isinstance(item.get("content"), str)
        ):
            raise AgentError(f"malformed patch entry: {item!r}")
        parsed.append(FilePatch(path=item["path"], content=item["content"]))
    return parsed


class BackendGenerationAgent(GenerationAgent):
    def __init__(self, backend: AgentBackend, *, model: str | None = None) -> None:
        self.test_writer = TestWriterAgent(backend, model=model)
        self.implementer = ImplementerAgent(backend, model=model)

    async def generate_test(self, request: CodeGenRequest) -> TestArtifact:
        try:
            response = await self.test_writer.run(build_test_prompt(request), {})
        except OSError as exc:
            raise AgentError(f"test generation failed: {exc}") from exc
        return parse_test_response(response.content)

    async def generate_impl(
        self, request: CodeGenRequest, failing_test: str, test_output: str = ""
    ) -> list[FilePatch]:
        prompt = build_impl_prompt(request, failing_test, test_output)
        try:
            response = await self.implementer.run(prompt, {})
        except OSError as exc:
            raise AgentError(f"impl generation failed: {exc}") from exc
        return parse_impl_response(response.content)
