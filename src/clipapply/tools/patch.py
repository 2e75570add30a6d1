"""Index-based hunk application that does not depend on matching context."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path, PurePosixPath
from typing import Any, Iterable, List, Literal, Mapping, Sequence, Tuple

from ..errors import HunkMismatchError, PatchError, PatchFileError, UnsafePathError
from .diff_parser import ChangeType, FilePatch, Hunk

LOGGER = logging.getLogger(__name__)
TELEMETRY_LOGGER = logging.getLogger("clipapply.telemetry")

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")

FileAction = Literal["created", "modified", "deleted", "unchanged"]


class ApplyStrategy(str, Enum):
    """How hunks are positioned when applied outside of ``git apply``."""

    INDEX_ONLY = "index-only"
    CONTEXT_CHECKED = "context-checked"


@dataclass(slots=True)
class FileApplyReport:
    """Outcome of forcing a set of hunks onto one file."""

    path: str
    action: FileAction = "unchanged"
    applied: int = 0
    skipped: int = 0
    blind: int = 0

    @property
    def written(self) -> bool:
        return self.action != "unchanged"

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "action": self.action,
            "applied": self.applied,
            "skipped": self.skipped,
            "blind": self.blind,
        }


def _serialise_event_value(value: Any) -> Any:
    """Convert telemetry payload values into JSON-friendly representations."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_event(event: str, **fields: Any) -> None:
    """Log a structured telemetry event as a single JSON line."""
    if not TELEMETRY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload: dict[str, Any] = {"event": event, "timestamp": datetime.now(timezone.utc).isoformat()}
    payload.update({key: _serialise_event_value(value) for key, value in fields.items()})
    TELEMETRY_LOGGER.info(json.dumps(payload, separators=(",", ":"), ensure_ascii=True))


def resolve_target(root: Path | str, path: str) -> Path:
    """Resolve ``path`` below ``root``, refusing anything that escapes it."""
    root_path = Path(root).resolve()
    cleaned = (path or "").replace("\\", "/").strip()
    candidate = PurePosixPath(cleaned)
    if not cleaned or not candidate.parts:
        raise UnsafePathError("Patch target path is empty.", path=path)
    if candidate.is_absolute() or _DRIVE_PREFIX.match(cleaned):
        raise UnsafePathError(f"Absolute paths are not permitted in patches: {path}", path=path)
    if any(part == ".." for part in candidate.parts):
        raise UnsafePathError(f"Path escaping detected in patch: {path}", path=path)
    if candidate.parts[0] == ".git":
        raise UnsafePathError("Patches may not target the .git directory.", path=path)

    target = (root_path / Path(*candidate.parts)).resolve()
    try:
        target.relative_to(root_path)
    except ValueError:
        raise UnsafePathError(f"Patch target resolves outside the working tree: {path}", path=path) from None
    return target


def _read_lines(target: Path, path: str) -> Tuple[List[str], str]:
    """Return the file split on LF plus the newline sequence it uses."""
    try:
        with target.open("r", encoding="utf-8", newline="") as handle:
            raw = handle.read()
    except (OSError, UnicodeDecodeError) as error:
        raise PatchFileError(f"Failed to read {path}: {error}", path=path) from error
    newline = "\r\n" if "\r\n" in raw else "\n"
    return raw.replace("\r\n", "\n").split("\n"), newline


def _write_text(target: Path, content: str, path: str) -> None:
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("w", encoding="utf-8", newline="") as handle:
            handle.write(content)
    except OSError as error:
        raise PatchFileError(f"Failed to write {path}: {error}", path=path) from error


def _old_index(hunk: Hunk) -> int:
    # An empty old range names the line after which the new lines go.
    if hunk.old_count == 0:
        return max(hunk.old_start, 0)
    return max(hunk.old_start - 1, 0)


def _new_index(hunk: Hunk) -> int:
    if hunk.new_count == 0:
        return max(hunk.new_start, 0)
    return max(hunk.new_start - 1, 0)


def _window_matches(lines: Sequence[str], index: int, expected: Sequence[str]) -> bool:
    return list(lines[index : index + len(expected)]) == list(expected)


def is_already_applied(lines: Sequence[str], hunk: Hunk, *, offset: int = 0) -> bool:
    """Return True when ``lines`` already hold the hunk's new side instead of its old side.

    ``offset`` is the net line delta of earlier hunks already present in the
    file. Pure insertions carry no old side to compare against and are never
    reported as applied.
    """
    if not hunk.old_lines or hunk.lines == hunk.old_lines:
        return False
    index = _old_index(hunk) + offset
    if _window_matches(lines, index, hunk.old_lines):
        return False
    return _window_matches(lines, index, hunk.lines)


@dataclass(slots=True)
class _Placement:
    hunk: Hunk
    index: int
    blind: bool = False


def _place(lines: Sequence[str], hunk: Hunk, offset: int) -> _Placement | None:
    """Find where ``hunk`` belongs in ``lines``; ``None`` means it is already applied."""
    index = _old_index(hunk) + offset
    if not hunk.old_lines or _window_matches(lines, index, hunk.old_lines):
        return _Placement(hunk, index)
    if is_already_applied(lines, hunk, offset=offset):
        return None
    for candidate in (_old_index(hunk), _new_index(hunk)):
        if candidate != index and _window_matches(lines, candidate, hunk.old_lines):
            return _Placement(hunk, candidate)
    return _Placement(hunk, index, blind=True)


def splice_hunks(
    lines: List[str],
    hunks: Iterable[Hunk],
    *,
    path: str,
    strategy: ApplyStrategy = ApplyStrategy.INDEX_ONLY,
    report: FileApplyReport | None = None,
) -> List[str]:
    """Apply ``hunks`` to ``lines`` in place.

    Hunks are located top-down so that hunks found already applied shift the
    expected position of the ones below them, then spliced bottom-up so no
    splice moves a position that is still pending. A hunk whose old side is
    found nowhere is spliced by index under ``INDEX_ONLY`` and rejected under
    ``CONTEXT_CHECKED`` before anything is changed.
    """
    report = report if report is not None else FileApplyReport(path=path)
    placements: List[_Placement] = []
    offset = 0
    for hunk in sorted(hunks, key=lambda item: item.old_start):
        placement = _place(lines, hunk, offset)
        if placement is None:
            report.skipped += 1
            offset += len(hunk.lines) - len(hunk.old_lines)
            LOGGER.debug("%s: hunk at line %d already applied", path, hunk.old_start)
            continue
        if placement.blind and strategy is ApplyStrategy.CONTEXT_CHECKED:
            index = placement.index
            raise HunkMismatchError(
                f"Hunk at line {hunk.old_start} of {path} does not match the file.",
                details={
                    "path": path,
                    "old_start": hunk.old_start,
                    "expected": list(hunk.old_lines),
                    "actual": list(lines[index : index + len(hunk.old_lines)]),
                },
            )
        placements.append(placement)

    for placement in sorted(placements, key=lambda item: (item.index, item.hunk.old_start), reverse=True):
        hunk, index = placement.hunk, placement.index
        if placement.blind:
            report.blind += 1
            emit_event("hunk_applied_blind", path=path, old_start=hunk.old_start, old_count=hunk.old_count)
        if len(lines) < index:
            lines.extend([""] * (index - len(lines)))
        lines[index : index + hunk.old_count] = hunk.lines
        report.applied += 1
    return lines


def synthesise_new_file(hunks: Sequence[Hunk], *, path: str) -> str:
    """Build the content of a file that does not exist yet from its hunks.

    Hunks must cover the file from line 1 without overlaps or gaps; anything
    else cannot be reconstructed and raises ``PatchError``.
    """

    ordered = sorted(hunks, key=lambda item: item.new_start)
    body: List[str] = []
    cursor = 1
    for hunk in ordered:
        start = max(hunk.new_start, 1)
        if start != cursor:
            problem = "overlap" if start < cursor else "leave a gap"
            raise PatchError(
                f"Cannot create {path}: hunks {problem} at line {start} (expected line {cursor}).",
                details={"path": path, "new_start": hunk.new_start, "expected": cursor},
            )
        body.extend(hunk.lines)
        cursor += len(hunk.lines)

    text = "\n".join(body)
    if body and not (ordered and ordered[-1].missing_newline):
        text += "\n"
    return text


def _probe(target: Path, path: str) -> Tuple[bool, bool]:
    """Return whether ``target`` exists and whether it is a directory."""
    try:
        return target.exists(), target.is_dir()
    except OSError as error:
        raise PatchFileError(f"Failed to inspect {path}: {error}", path=path) from error


def apply_hunks(
    root: Path | str,
    path: str,
    hunks: Sequence[Hunk],
    *,
    strategy: ApplyStrategy = ApplyStrategy.INDEX_ONLY,
    change_type: ChangeType = "modify",
) -> FileApplyReport:
    """Mutate, create or delete ``path`` below ``root`` according to ``hunks``."""
    target = resolve_target(root, path)
    report = FileApplyReport(path=path)
    exists, is_dir = _probe(target, path)

    if change_type == "delete":
        if exists:
            try:
                target.unlink()
            except OSError as error:
                raise PatchFileError(f"Failed to delete {path}: {error}", path=path) from error
            report.action = "deleted"
        return report

    if not exists:
        content = synthesise_new_file(hunks, path=path)
        _write_text(target, content, path)
        report.action = "created"
        report.applied = len(hunks)
        return report

    if is_dir:
        raise PatchFileError(f"Patch target is a directory: {path}", path=path)

    lines, newline = _read_lines(target, path)
    original = list(lines)
    splice_hunks(lines, hunks, path=path, strategy=strategy, report=report)
    if lines != original:
        _write_text(target, newline.join(lines), path)
        report.action = "modified"
    return report


@dataclass(slots=True)
class PatchApplier:
    """Apply parsed file patches below ``root`` one file at a time.

    Reports accumulate across calls so a caller can tell which files were
    written before a failure; nothing already written is rolled back.
    """

    root: Path
    strategy: ApplyStrategy = ApplyStrategy.INDEX_ONLY
    reports: List[FileApplyReport] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.root = Path(self.root).resolve()

    @property
    def written_paths(self) -> Tuple[str, ...]:
        return tuple(report.path for report in self.reports if report.written)

    def apply(self, patch: FilePatch) -> FileApplyReport:
        report = apply_hunks(
            self.root,
            patch.path,
            patch.hunks,
            strategy=self.strategy,
            change_type=patch.change_type,
        )
        self.reports.append(report)
        emit_event("file_patched", strategy=self.strategy, **report.to_dict())
        return report

    def apply_all(self, patches: Iterable[FilePatch]) -> List[FileApplyReport]:
        return [self.apply(patch) for patch in patches]


__all__ = [
    "ApplyStrategy",
    "FileApplyReport",
    "PatchApplier",
    "apply_hunks",
    "emit_event",
    "is_already_applied",
    "resolve_target",
    "splice_hunks",
    "synthesise_new_file",
]
