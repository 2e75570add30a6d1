"""Isolate the change-script and its embedded diff payloads from pasted text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import List, Literal

from ..errors import NoScriptFound

LOGGER = logging.getLogger(__name__)

_WRAPPING_FENCE = re.compile(
    r"\A(?P<fence>`{3,})[^\n`]*\n(?:(?P<body>.*?)\n)?(?P=fence)`*[ \t]*\Z",
    re.DOTALL,
)
_FENCED_BLOCK = re.compile(
    r"^(?P<fence>`{3,})[^\n`]*\n(?P<body>.*?)^(?P=fence)`*[ \t]*$",
    re.DOTALL | re.MULTILINE,
)
_INVOCATION = re.compile(
    r"^[ \t]*(?:\(\s*cd\b.*?\bgit[ \t]+apply\b|git[ \t]+apply\b).*",
    re.DOTALL | re.MULTILINE,
)
_LOOSE_INVOCATION = re.compile(r"\bgit\s+apply\b", re.IGNORECASE)
_HEREDOC = re.compile(
    r"(?<!<)<<(?!<)-?[ \t]*(?P<quote>['\"]?)(?P<tag>[A-Za-z_][A-Za-z0-9_]*)(?P=quote)[^\n]*\n"
    r"(?P<body>.*?)(?:^\t*(?P=tag)[ \t]*$|\Z)",
    re.DOTALL | re.MULTILINE,
)
_DIFF_MARKER = re.compile(r"^(?:diff --git |@@ -\d)", re.MULTILINE)
_DIFF_SECTION = re.compile(r"^diff --git ", re.MULTILINE)


@dataclass(slots=True)
class ScriptText:
    """Shell fragment believed to contain a ``git apply`` invocation."""

    text: str
    has_invocation: bool
    fenced: bool = field(default=False, compare=False)


@dataclass(slots=True)
class DiffBlock:
    """One raw unified-diff payload found inside a script."""

    text: str
    source: Literal["heredoc", "inline"]
    terminator: str | None = None


def normalise_text(raw: str) -> str:
    """Convert CRLF/CR sequences to LF and trim surrounding whitespace."""
    return (raw or "").replace("\r\n", "\n").replace("\r", "\n").strip()


def strip_fence(text: str) -> tuple[str, bool]:
    """Remove a fence wrapping the whole of ``text``."""
    match = _WRAPPING_FENCE.match(text)
    if not match:
        return text, False
    return (match.group("body") or "").strip(), True


def contains_apply_command(text: str) -> bool:
    """Return True when ``text`` mentions ``git apply`` anywhere."""
    return bool(_LOOSE_INVOCATION.search(text or ""))


def _fenced_script(text: str) -> str | None:
    for match in _FENCED_BLOCK.finditer(text):
        body = match.group("body")
        if _INVOCATION.search(body):
            return body.strip()
    return None


def extract_script(raw: str) -> ScriptText:
    """Isolate the change-script portion of ``raw``.

    The script starts at the first line that runs ``git apply`` either bare or
    from a ``(cd ... && git apply ...)`` subshell and keeps every following
    line, so heredoc bodies and their terminators survive. Text without such
    a line is returned whole with ``has_invocation`` unset.
    """

    text = normalise_text(raw)
    if not text:
        raise NoScriptFound("Input text is empty.")

    text, fenced = strip_fence(text)
    if not fenced:
        embedded = _fenced_script(text)
        if embedded is not None:
            text, fenced = embedded, True

    match = _INVOCATION.search(text)
    if match is None:
        LOGGER.debug("No git apply invocation found; using %d characters as-is", len(text))
        if not text:
            raise NoScriptFound("Input text only contained an empty fence.")
        return ScriptText(text=text, has_invocation=False, fenced=fenced)
    return ScriptText(text=match.group(0).strip(), has_invocation=True, fenced=fenced)


def _heredoc_body(match: re.Match[str]) -> str:
    body = match.group("body")
    if body.endswith("\n"):
        body = body[:-1]
    return body


def extract_diff_blocks(script: ScriptText | str) -> List[DiffBlock]:
    """Return every diff payload embedded in ``script`` in order of appearance."""
    text = script.text if isinstance(script, ScriptText) else normalise_text(script)
    blocks: List[DiffBlock] = []
    for match in _HEREDOC.finditer(text):
        body = _heredoc_body(match)
        if not body.strip() or not _DIFF_MARKER.search(body):
            LOGGER.debug("Ignoring heredoc %s without diff content", match.group("tag"))
            continue
        blocks.append(DiffBlock(text=body, source="heredoc", terminator=match.group("tag")))

    if not blocks and _DIFF_SECTION.search(text):
        blocks.append(DiffBlock(text=text, source="inline"))

    LOGGER.debug("Found %d diff block(s)", len(blocks))
    return blocks


__all__ = [
    "DiffBlock",
    "ScriptText",
    "contains_apply_command",
    "extract_diff_blocks",
    "extract_script",
    "normalise_text",
    "strip_fence",
]
