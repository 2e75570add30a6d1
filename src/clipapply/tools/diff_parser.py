"""Tolerant unified diff parser producing per-file replacement hunks."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Sequence, Tuple

from .script import DiffBlock

LOGGER = logging.getLogger(__name__)

ChangeType = Literal["add", "modify", "delete"]

_DIFF_HEADER = re.compile(r"^diff --git a/(?P<old>.+?) b/(?P<new>.+)$")
_BARE_DIFF_HEADER = re.compile(r"^diff --git (?P<old>\S+) (?P<new>\S+)$")
_HUNK_HEADER = re.compile(
    r"^@@ -(?P<old_start>\d+)(?:,(?P<old_count>\d+))? "
    r"\+(?P<new_start>\d+)(?:,(?P<new_count>\d+))? @@"
)
_DIFF_PREFIXES = (" ", "+", "-")


@dataclass(slots=True)
class Hunk:
    """One ``@@`` region: replace ``old_count`` lines at ``old_start`` with ``lines``."""

    old_start: int
    old_count: int
    new_start: int
    new_count: int
    lines: List[str] = field(default_factory=list)
    old_lines: List[str] = field(default_factory=list)
    missing_newline: bool = False


@dataclass(slots=True)
class FilePatch:
    """All hunks targeting one file within a diff block."""

    path: str
    hunks: List[Hunk] = field(default_factory=list)
    change_type: ChangeType = "modify"


@dataclass(slots=True)
class ParseDiagnostic:
    """A tolerated anomaly encountered while parsing."""

    kind: str
    message: str
    line: int | None = None

    def render(self) -> str:
        location = f"line {self.line}: " if self.line is not None else ""
        return f"{location}{self.message}"


@dataclass(slots=True)
class DiffParseResult:
    """Files parsed from a diff block along with skipped-section diagnostics."""

    files: Dict[str, FilePatch] = field(default_factory=dict)
    diagnostics: List[ParseDiagnostic] = field(default_factory=list)

    @property
    def hunk_count(self) -> int:
        return sum(len(patch.hunks) for patch in self.files.values())

    @property
    def has_changes(self) -> bool:
        return any(patch.hunks or patch.change_type == "delete" for patch in self.files.values())


def _normalise_diff_path(entry: str) -> str | None:
    """Translate diff header operands into repository-relative paths."""
    entry = entry.strip()
    if entry.startswith('"') and entry.endswith('"') and len(entry) >= 2:
        entry = entry[1:-1]
    if entry == "/dev/null":
        return None
    if entry.startswith("a/") or entry.startswith("b/"):
        entry = entry[2:]
    entry = entry.split("\t", 1)[0].strip()
    return entry or None


def _default_count(value: str | None) -> int:
    """Return the number of lines represented in a hunk header."""
    return int(value) if value is not None else 1


def _split_diff_sections(lines: Sequence[str]) -> list[tuple[int, int]]:
    """Identify line ranges corresponding to individual ``diff --git`` sections."""
    sections: list[tuple[int, int]] = []
    start: int | None = None
    for index, line in enumerate(lines):
        if line.startswith("diff --git "):
            if start is not None:
                sections.append((start, index))
            start = index
    if start is not None:
        sections.append((start, len(lines)))
    return sections


def _split_bare_sections(lines: Sequence[str]) -> list[tuple[int, int]]:
    """Identify sections introduced by ``---``/``+++`` pairs when git headers are absent."""
    starts = [
        index
        for index in range(len(lines) - 1)
        if lines[index].startswith("--- ") and lines[index + 1].startswith("+++ ")
    ]
    return [(start, starts[pos + 1] if pos + 1 < len(starts) else len(lines)) for pos, start in enumerate(starts)]


def _header_path(header: str) -> str | None:
    match = _DIFF_HEADER.match(header) or _BARE_DIFF_HEADER.match(header)
    if not match:
        return None
    return _normalise_diff_path(match.group("new")) or _normalise_diff_path(match.group("old"))


def _section_change_type(preamble: Sequence[str]) -> ChangeType:
    """Detect add/delete markers in the lines preceding the first hunk."""
    for line in preamble:
        if line.startswith(("new file mode", "--- /dev/null")):
            return "add"
        if line.startswith(("deleted file mode", "+++ /dev/null")):
            return "delete"
    return "modify"


def _bare_path(preamble: Sequence[str]) -> str | None:
    old_path: str | None = None
    new_path: str | None = None
    for line in preamble:
        if line.startswith("--- ") and old_path is None:
            old_path = _normalise_diff_path(line[4:])
        elif line.startswith("+++ ") and new_path is None:
            new_path = _normalise_diff_path(line[4:])
    return new_path or old_path


def _consume_hunk(
    lines: Sequence[str],
    index: int,
    match: re.Match[str],
    *,
    offset: int,
    path: str,
    diagnostics: List[ParseDiagnostic],
) -> Tuple[Hunk | None, int]:
    """Parse the body following the header at ``index``; return the hunk and next index."""
    header_line = offset + index + 1
    hunk = Hunk(
        old_start=int(match.group("old_start")),
        old_count=_default_count(match.group("old_count")),
        new_start=int(match.group("new_start")),
        new_count=_default_count(match.group("new_count")),
    )
    seen_old = 0
    seen_new = 0
    last_prefix: str | None = None

    index += 1
    while index < len(lines):
        line = lines[index]
        if line.startswith("@@"):
            break
        if not line:
            index += 1
            continue
        if line.startswith("\\"):
            if last_prefix in ("+", " "):
                hunk.missing_newline = True
            index += 1
            continue

        prefix = line[:1]
        if prefix not in _DIFF_PREFIXES and seen_old >= hunk.old_count and seen_new >= hunk.new_count:
            diagnostics.append(
                ParseDiagnostic(
                    kind="trailing-text",
                    message=f"{path}: ignored text after complete hunk: {line[:60]!r}",
                    line=offset + index + 1,
                )
            )
            break

        if prefix == "-":
            hunk.old_lines.append(line[1:])
            seen_old += 1
        elif prefix == "+":
            hunk.lines.append(line[1:])
            seen_new += 1
        else:
            content = line[1:] if prefix == " " else line
            hunk.lines.append(content)
            hunk.old_lines.append(content)
            seen_old += 1
            seen_new += 1
        last_prefix = prefix if prefix in _DIFF_PREFIXES else " "
        index += 1

    if seen_old == 0 and seen_new == 0:
        diagnostics.append(
            ParseDiagnostic(kind="empty-hunk", message=f"{path}: dropped hunk without body", line=header_line)
        )
        return None, index

    if seen_old != hunk.old_count or seen_new != hunk.new_count:
        diagnostics.append(
            ParseDiagnostic(
                kind="count-mismatch",
                message=(
                    f"{path}: hunk header declares -{hunk.old_count}/+{hunk.new_count} "
                    f"but body has -{seen_old}/+{seen_new}"
                ),
                line=header_line,
            )
        )
    return hunk, index


def _parse_hunks(
    lines: Sequence[str],
    *,
    offset: int,
    path: str,
    diagnostics: List[ParseDiagnostic],
) -> List[Hunk]:
    hunks: List[Hunk] = []
    index = 0
    while index < len(lines):
        line = lines[index]
        if not line.startswith("@@"):
            index += 1
            continue
        match = _HUNK_HEADER.match(line)
        if not match:
            diagnostics.append(
                ParseDiagnostic(
                    kind="malformed-hunk-header",
                    message=f"{path}: skipped malformed hunk header {line!r}",
                    line=offset + index + 1,
                )
            )
            index += 1
            continue
        hunk, index = _consume_hunk(lines, index, match, offset=offset, path=path, diagnostics=diagnostics)
        if hunk is not None:
            hunks.append(hunk)
    return hunks


def _first_hunk_index(lines: Sequence[str]) -> int:
    for index, line in enumerate(lines):
        if line.startswith("@@"):
            return index
    return len(lines)


def _add_file_patch(files: Dict[str, FilePatch], patch: FilePatch) -> None:
    existing = files.get(patch.path)
    if existing is None:
        files[patch.path] = FilePatch(path=patch.path, hunks=list(patch.hunks), change_type=patch.change_type)
        return
    existing.hunks.extend(patch.hunks)
    if patch.change_type != "modify":
        existing.change_type = patch.change_type


def parse_diff(block: DiffBlock | str) -> DiffParseResult:
    """Parse ``block`` into file patches.

    Sections lacking a recognisable header, malformed hunk headers and empty
    hunks are skipped and reported through ``diagnostics``; parsing never
    raises on malformed input.
    """

    text = block.text if isinstance(block, DiffBlock) else block
    lines = (text or "").replace("\r\n", "\n").split("\n")
    result = DiffParseResult()

    sections = _split_diff_sections(lines)
    git_style = bool(sections)
    if not git_style:
        sections = _split_bare_sections(lines)

    for start, end in sections:
        section = lines[start:end]
        preamble = section[: _first_hunk_index(section)]
        if git_style:
            path = _header_path(section[0])
        else:
            path = _bare_path(preamble)
        if path is None:
            result.diagnostics.append(
                ParseDiagnostic(
                    kind="missing-header",
                    message=f"skipped section without a usable file header: {section[0][:60]!r}",
                    line=start + 1,
                )
            )
            continue

        change_type = _section_change_type(preamble)
        hunks = _parse_hunks(section, offset=start, path=path, diagnostics=result.diagnostics)
        if not hunks and change_type != "delete":
            result.diagnostics.append(
                ParseDiagnostic(kind="no-hunks", message=f"{path}: section has no hunks", line=start + 1)
            )
            continue
        _add_file_patch(result.files, FilePatch(path=path, hunks=hunks, change_type=change_type))

    LOGGER.debug(
        "Parsed %d file(s), %d hunk(s), %d diagnostic(s)",
        len(result.files),
        result.hunk_count,
        len(result.diagnostics),
    )
    return result


__all__ = [
    "ChangeType",
    "DiffParseResult",
    "FilePatch",
    "Hunk",
    "ParseDiagnostic",
    "parse_diff",
]
