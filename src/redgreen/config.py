from __future__ import annotations

import json
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from redgreen.errors import ConfigError

BackendName = Literal["claude", "codex"]
SECTION_ORDER = ("project", "agent", "loop", "run")


@dataclass(slots=True)
class ProjectConfig:
    name: str = "my-project"
    language: str = "python"
    test_command: str = "python -m pytest -q"
    scoped_test_command: str = "python -m pytest -q {target}"


@dataclass(slots=True)
class AgentConfig:
    primary: BackendName = "claude"
    fallback: BackendName = "codex"
    model: str = ""
    max_retries: int = 1
    retry_backoff_seconds: float = 0.5
    timeout_seconds: float = 300.0


@dataclass(slots=True)
class LoopConfig:
    max_retries: int = 2
    max_consecutive_failures: int = 3
    timeout_seconds: float = 1800.0
    scoped_timeout_seconds: float = 30.0
    suite_timeout_seconds: float = 600.0
    restore_on_revert: bool = False


@dataclass(slots=True)
class RunConfig:
    spec_dir: str = "."
    output_dir: str = ".redgreen"
    branch_name: str = ""


@dataclass(slots=True)
class RedGreenConfig:
    project: ProjectConfig = field(default_factory=ProjectConfig)
    agent: AgentConfig = field(default_factory=AgentConfig)
    loop: LoopConfig = field(default_factory=LoopConfig)
    run: RunConfig = field(default_factory=RunConfig)

    @classmethod
    def default(cls) -> RedGreenConfig:
        return cls()

    @classmethod
    def from_dict(cls, data: dict) -> RedGreenConfig:
        try:
            return cls(
                project=ProjectConfig(**data.get("project", {})),
                agent=AgentConfig(**data.get("agent", {})),
                loop=LoopConfig(**data.get("loop", {})),
                run=RunConfig(**data.get("run", {})),
            )
        except TypeError as exc:
            raise ConfigError(f"Invalid configuration: {exc}") from exc

    def to_dict(self) -> dict:
        return {
            "project": {
                "name": self.project.name,
                "language": self.project.language,
                "test_command": self.project.test_command,
                "scoped_test_command": self.project.scoped_test_command,
            },
            "agent": {
                "primary": self.agent.primary,
                "fallback": self.agent.fallback,
                "model": self.agent.model,
                "max_retries": self.agent.max_retries,
                "retry_backoff_seconds": self.agent.retry_backoff_seconds,
                "timeout_seconds": self.agent.timeout_seconds,
            },
            "loop": {
                "max_retries": self.loop.max_retries,
                "max_consecutive_failures": self.loop.max_consecutive_failures,
                "timeout_seconds": self.loop.timeout_seconds,
                "scoped_timeout_seconds": self.loop.scoped_timeout_seconds,
                "suite_timeout_seconds": self.loop.suite_timeout_seconds,
                "restore_on_revert": self.loop.restore_on_revert,
            },
            "run": {
                "spec_dir": self.run.spec_dir,
                "output_dir": self.run.output_dir,
                "branch_name": self.run.branch_name,
            },
        }


def _toml_value(value: object) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        rendered = f"{value:.3f}".rstrip("0")
        return rendered + "0" if rendered.endswith(".") else rendered
    return json.dumps(str(value), ensure_ascii=False)


def dumps_toml(config: RedGreenConfig) -> str:
    data = config.to_dict()
    lines: list[str] = []
    for section in SECTION_ORDER:
        lines.append(f"[{section}]")
        for key, value in data[section].items():
            lines.append(f"{key} = {_toml_value(value)}")
        lines.append("")
    return "\n".join(lines).strip() + "\n"


def load_config(path: Path) -> RedGreenConfig:
    if not path.exists():
        return RedGreenConfig.default()
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Cannot parse {path}: {exc}") from exc
    return RedGreenConfig.from_dict(data)


def save_config(path: Path, config: RedGreenConfig) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dumps_toml(config), encoding="utf-8")
