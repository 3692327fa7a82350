"""Run results (``results.json``) and the human-readable run summary (``summary.md``)."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from redgreen.confidence import ConfidenceResult
from redgreen.tracker import TaskProgress, TaskStatus, TrackerSummary

RunStatus = Literal["pass", "fail", "error", "abstain"]

SCHEMA_VERSION = "1.0"
RESULTS_FILE = "results.json"
SUMMARY_FILE = "summary.md"

STATUS_ICONS = {
    TaskStatus.COMMITTED: "[x]",
    TaskStatus.SKIPPED: "[-]",
    TaskStatus.FAILED: "[!]",
    TaskStatus.RED: "[~]",
    TaskStatus.GREEN: "[~]",
}


@dataclass(frozen=True, slots=True)
class Artifact:
    name: str
    path: str
    media_type: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "path": self.path, "media_type": self.media_type}


@dataclass(slots=True)
class RunResults:
    status: RunStatus
    confidence: float
    summary: str
    artifacts: list[Artifact] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)
    schema_version: str = SCHEMA_VERSION

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "schema_version": self.schema_version,
            "status": self.status,
            "confidence": self.confidence,
            "summary": self.summary,
            "artifacts": [artifact.to_dict() for artifact in self.artifacts],
        }
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> RunResults:
        return cls(
            status=payload["status"],
            confidence=float(payload.get("confidence", 0.0)),
            summary=str(payload.get("summary", "")),
            artifacts=[
                Artifact(item["name"], item["path"], item["media_type"])
                for item in payload.get("artifacts", [])
            ],
            metadata=dict(payload.get("metadata") or {}),
            schema_version=str(payload.get("schema_version", SCHEMA_VERSION)),
        )


def summary_text(summary: TrackerSummary) -> str:
    return (
        f"Implementation complete: {summary.committed}/{summary.total} tasks committed, "
        f"{summary.skipped} skipped, {summary.failed} failed."
    )


def build_results(
    summary: TrackerSummary,
    confidence: ConfidenceResult,
    *,
    repo_dir: str = "",
    agent_cli: str = "",
    branch: str = "",
) -> RunResults:
    metadata = {
        key: value
        for key, value in (("repo_dir", repo_dir), ("agent_cli", agent_cli), ("branch", branch))
        if value
    }
    return RunResults(
        status=confidence.status,
        confidence=confidence.score,
        summary=summary_text(summary),
        artifacts=[
            Artifact("summary", SUMMARY_FILE, "text/markdown"),
            Artifact("progress", "progress.json", "application/json"),
        ],
        metadata=metadata,
    )


def build_error_results(
    summary: TrackerSummary,
    reason: str,
    *,
    repo_dir: str = "",
    agent_cli: str = "",
    branch: str = "",
) -> RunResults:
    """Results for a run the sequencer could not finish; partial progress is still listed."""
    results = build_results(
        summary,
        ConfidenceResult(score=0.0, status="fail"),
        repo_dir=repo_dir,
        agent_cli=agent_cli,
        branch=branch,
    )
    results.status = "error"
    results.summary = f"Run error: {reason}. {summary_text(summary)}"
    return results


def build_abstain_results(reason: str) -> RunResults:
    return RunResults(
        status="abstain",
        confidence=0.0,
        summary=f"Abstained: {reason}",
        artifacts=[Artifact("results", RESULTS_FILE, "application/json")],
    )


def format_duration(seconds: float) -> str:
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    if total < 3600:
        return f"{total // 60}m{total % 60}s"
    return f"{total // 3600}h{(total // 60) % 60}m"


def render_summary(
    tasks: tuple[TaskProgress, ...] | list[TaskProgress],
    summary: TrackerSummary,
    confidence: ConfidenceResult,
    duration_seconds: float,
) -> str:
    lines = [
        "# Implementation Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Total Tasks | {summary.total} |",
        f"| Committed | {summary.committed} |",
        f"| Skipped | {summary.skipped} |",
        f"| Failed | {summary.failed} |",
        f"| Confidence | {confidence.score:.2f} |",
        f"| Status | {confidence.status} |",
        f"| Duration | {format_duration(duration_seconds)} |",
        "",
    ]
    current_phase: str | None = None
    for task in tasks:
        if task.phase != current_phase:
            if current_phase is not None:
                lines.append("")
            current_phase = task.phase
            lines.extend([f"## Phase: {current_phase}", ""])
        icon = STATUS_ICONS.get(task.status, "[ ]")
        lines.append(f"- {icon} **{task.task_id}**: {task.description}")
        if task.commit_sha:
            lines.append(f"  - Commit: `{task.commit_sha[:8]}`")
        if task.test_file:
            lines.append(f"  - Test: `{task.test_file}`")
        if task.reason:
            lines.append(f"  - Reason: {task.reason}")
    return "\n".join(lines).rstrip() + "\n"


def write_results(output_dir: Path, results: RunResults) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / RESULTS_FILE
    path.write_text(json.dumps(results.to_dict(), indent=2) + "\n", encoding="utf-8")
    return path


def load_results(output_dir: Path) -> RunResults | None:
    path = output_dir / RESULTS_FILE
    if not path.exists():
        return None
    return RunResults.from_dict(json.loads(path.read_text(encoding="utf-8")))


def write_summary(output_dir: Path, markdown: str) -> Path:
    output_dir.mkdir(parents=True, exist_ok=True)
    path = output_dir / SUMMARY_FILE
    path.write_text(markdown, encoding="utf-8")
    return path
