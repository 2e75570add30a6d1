"""Exception hierarchy shared by the extraction, parsing and apply stages."""

from __future__ import annotations

from typing import Any, Mapping


class PatchError(RuntimeError):
    """Raised when a patch cannot be extracted, validated or applied."""

    def __init__(self, message: str, *, details: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details: dict[str, Any] = dict(details or {})


class NoScriptFound(PatchError):
    """Raised when the input text is empty."""


class NoDiffPayload(PatchError):
    """Raised when a script carries no heredoc or diff content."""


class PatchFileError(PatchError):
    """Raised when reading or writing a target file fails."""

    def __init__(
        self,
        message: str,
        *,
        path: str,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.path = path


class UnsafePathError(PatchFileError):
    """Raised when a diff targets a path outside the working tree."""


class HunkMismatchError(PatchError):
    """Raised by the context-checked strategy when a hunk does not line up."""


class ExternalApplyFailed(PatchError):
    """Raised when the externally executed script reports failure."""


class ShellNotFoundError(PatchError):
    """Raised when no usable shell can be located."""


class ConfigError(PatchError):
    """Raised when the configuration file cannot be loaded or validated."""


__all__ = [
    "ConfigError",
    "ExternalApplyFailed",
    "HunkMismatchError",
    "NoDiffPayload",
    "NoScriptFound",
    "PatchError",
    "PatchFileError",
    "ShellNotFoundError",
    "UnsafePathError",
]
