from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from redgreen.tracker import TrackerSummary

ConfidenceStatus = Literal["pass", "fail", "abstain"]

SKIPPED_CREDIT = 0.9
SUITE_BONUS = 0.1
PASS_THRESHOLD = 0.5


@dataclass(frozen=True, slots=True)
class ConfidenceResult:
    score: float
    status: ConfidenceStatus
    breakdown: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {"score": self.score, "status": self.status, "breakdown": dict(self.breakdown)}


def score_confidence(summary: TrackerSummary, suite_passed: bool) -> ConfidenceResult:
    """Turn a tracker summary and the final suite outcome into a verdict.

    Committed tasks earn full credit and skipped (pre-satisfied) tasks 90%. A clean final
    suite adds a flat 0.1 bonus; a failing one zeroes the score whatever else happened.
    """
    total = float(summary.total)
    if total == 0:
        return ConfidenceResult(score=0.0, status="abstain")

    committed = summary.committed / total
    skipped = summary.skipped * SKIPPED_CREDIT / total
    failed = summary.failed / total

    if not suite_passed:
        return ConfidenceResult(
            score=0.0,
            status="fail",
            breakdown={
                "committed": committed,
                "skipped": summary.skipped / total,
                "failed": failed,
                "suite": 0.0,
            },
        )

    score = min(committed + skipped + SUITE_BONUS, 1.0)
    return ConfidenceResult(
        score=score,
        status="fail" if score < PASS_THRESHOLD else "pass",
        breakdown={
            "committed": committed,
            "skipped": skipped,
            "failed": failed,
            "suite": SUITE_BONUS,
        },
    )
