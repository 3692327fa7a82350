from pathlib import Path

import pytest

from redgreen.errors import PlanParseError, SpecReadError
from redgreen.plan import count_tasks, find_task, parse_plan, parse_plan_file, read_spec

PLAN = """\
# Plan

Intro text that is not a task.

- [ ] stray item before any phase

## Phase 1: Foundations

- [x] Set up the package layout
- [ ] Add a parser in `src/widgets/parser.py` and `src/widgets/tokens.py`
  - [ ] indented detail is ignored
- [~] Wire the parser into `cli` (not a path)

## Phase 2: Reporting

- [ ] Render a summary table
"""


def test_parse_plan_builds_phases_and_ids() -> None:
    phases = parse_plan(PLAN)

    assert [phase.name for phase in phases] == ["Foundations", "Reporting"]
    assert [task.id for task in phases[0].tasks] == ["1.1", "1.2", "1.3"]
    assert phases[1].tasks[0].id == "2.1"
    assert phases[1].tasks[0].phase == "Reporting"
    assert count_tasks(phases) == 4


def test_parse_plan_reads_markers_and_file_hints() -> None:
    phases = parse_plan(PLAN)
    done, parser, wiring = phases[0].tasks

    assert done.completed and not done.in_progress
    assert parser.files == ("src/widgets/parser.py", "src/widgets/tokens.py")
    assert wiring.in_progress
    assert wiring.files == ()


def test_find_task() -> None:
    phases = parse_plan(PLAN)

    assert find_task(phases, "2.1").description == "Render a summary table"
    assert find_task(phases, "9.9") is None


def test_parse_plan_requires_phases_and_tasks() -> None:
    with pytest.raises(PlanParseError, match="no phases"):
        parse_plan("- [ ] orphan task\n")
    with pytest.raises(PlanParseError, match="no tasks"):
        parse_plan("## Phase 1: Empty\n\nnothing here\n")


def test_parse_plan_file_missing(tmp_path: Path) -> None:
    with pytest.raises(PlanParseError):
        parse_plan_file(tmp_path / "plan.md")


def test_read_spec_collects_acceptance_criteria(tmp_path: Path) -> None:
    spec = tmp_path / "spec.md"
    spec.write_text(
        "# Widget\n\n## Acceptance Criteria\n\n- [ ] Widget exists\n- [x] Widget renders\n"
        "\n## Notes\n\n- [ ] not a criterion\n",
        encoding="utf-8",
    )

    context = read_spec(spec)

    assert context.acceptance_criteria == ["Widget exists", "Widget renders"]
    assert context.raw.startswith("# Widget")


def test_read_spec_rejects_missing_and_empty(tmp_path: Path) -> None:
    with pytest.raises(SpecReadError):
        read_spec(tmp_path / "spec.md")

    empty = tmp_path / "empty.md"
    empty.write_text("  \n", encoding="utf-8")
    with pytest.raises(SpecReadError):
        read_spec(empty)
