"""Extraction, parsing and apply helpers used by the orchestrator."""

from .diff_parser import DiffParseResult, FilePatch, Hunk, ParseDiagnostic, parse_diff
from .patch import ApplyStrategy, FileApplyReport, PatchApplier, apply_hunks, resolve_target
from .script import DiffBlock, ScriptText, contains_apply_command, extract_diff_blocks, extract_script
from .shell import RunResult, ScriptRunner, ShellRunner, find_shell
from .vcs import GitError, GitRepository

__all__ = [
    "ApplyStrategy",
    "DiffBlock",
    "DiffParseResult",
    "FileApplyReport",
    "FilePatch",
    "GitError",
    "GitRepository",
    "Hunk",
    "ParseDiagnostic",
    "PatchApplier",
    "RunResult",
    "ScriptRunner",
    "ScriptText",
    "ShellRunner",
    "apply_hunks",
    "contains_apply_command",
    "extract_diff_blocks",
    "extract_script",
    "find_shell",
    "parse_diff",
    "resolve_target",
]
