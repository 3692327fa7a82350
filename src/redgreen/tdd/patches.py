from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from redgreen.errors import PathTraversalError, WriteError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class FilePatch:
    path: str
    content: str


@dataclass(frozen=True, slots=True)
class TestArtifact:
    test_path: str
    test_content: str
    package_name: str = ""

    __test__ = False


def resolve_inside(root: Path, relative_path: str) -> Path:
    """Resolve ``relative_path`` against ``root``, refusing anything that escapes it."""
    root_abs = root.resolve()
    target = (root_abs / relative_path).resolve()
    if target != root_abs and root_abs not in target.parents:
        raise PathTraversalError(
            f"patch path {relative_path!r} resolves outside repo root: {target}"
        )
    return target


def _write(target: Path, content: str) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise WriteError(f"cannot write {target}: {exc}") from exc


def apply_patches(root: Path, patches: list[FilePatch]) -> list[str]:
    """Write every patch under ``root``; the first failure aborts the rest of the batch."""
    written: list[str] = []
    for patch in patches:
        target = resolve_inside(root, patch.path)
        _write(target, patch.content)
        written.append(patch.path)
    logger.debug("Applied %d patch(es) under %s", len(written), root)
    return written


def write_test_file(root: Path, artifact: TestArtifact) -> Path:
    target = resolve_inside(root, artifact.test_path)
    _write(target, artifact.test_content)
    return target


def snapshot_files(root: Path, paths: list[str]) -> dict[str, str | None]:
    """Capture the current content of ``paths``; ``None`` marks files that do not exist."""
    snapshot: dict[str, str | None] = {}
    for relative_path in paths:
        target = resolve_inside(root, relative_path)
        snapshot[relative_path] = (
            target.read_text(encoding="utf-8") if target.is_file() else None
        )
    return snapshot


def revert_files(
    root: Path, paths: list[str], snapshot: dict[str, str | None] | None = None
) -> None:
    """Undo an attempt's writes.

    Without a snapshot the files are deleted, which also discards whatever content a
    pre-existing file had before the attempt overwrote it. With a snapshot, files that
    existed beforehand get their previous content back.
    """
    for relative_path in paths:
        target = root / relative_path
        previous = snapshot.get(relative_path) if snapshot is not None else None
        if previous is not None:
            _write(target, previous)
            continue
        try:
            target.unlink()
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise WriteError(f"cannot remove {target}: {exc}") from exc
