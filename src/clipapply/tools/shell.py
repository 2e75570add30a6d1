"""Run change-scripts through bash and report a success/failure result."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from ..errors import ShellNotFoundError

LOGGER = logging.getLogger(__name__)

WINDOWS_BASH_CANDIDATES: tuple[str, ...] = (
    r"C:\Program Files\Git\bin\bash.exe",
    r"C:\Program Files\Git\git-bash.exe",
    r"C:\Program Files\Git\usr\bin\bash.exe",
    r"C:\Program Files (x86)\Git\bin\bash.exe",
)


@dataclass(slots=True)
class RunResult:
    """Outcome of running a script externally."""

    success: bool
    output: str = ""
    error: str = ""
    returncode: int | None = None

    @property
    def message(self) -> str:
        text = self.error.strip() or self.output.strip()
        if text:
            return text
        if self.returncode is not None:
            return f"exit status {self.returncode}"
        return "unknown error"


class ScriptRunner(Protocol):
    """Capability that executes a script inside a working directory."""

    def run(self, script: str, cwd: Path) -> RunResult:  # pragma: no cover - protocol
        ...


def _resolve_candidate(candidate: str) -> str | None:
    if Path(candidate).is_file():
        return candidate
    return shutil.which(candidate)


def find_shell(
    configured: str | None = None,
    *,
    platform: str | None = None,
    candidates: Sequence[str] | None = None,
) -> str:
    """Locate bash: the configured path, then platform defaults."""
    platform_name = platform or sys.platform
    search: list[str] = []
    if configured and configured.strip():
        search.append(configured.strip())
    if candidates is not None:
        search.extend(candidates)
    elif platform_name.startswith("win"):
        search.extend(WINDOWS_BASH_CANDIDATES)
    else:
        search.extend(("bash", "sh"))

    for candidate in search:
        resolved = _resolve_candidate(candidate)
        if resolved:
            return resolved

    if platform_name.startswith("win"):
        raise ShellNotFoundError(
            "Git Bash not found. Set shell.path in the configuration to your bash.exe "
            r"(e.g., C:\Program Files\Git\bin\bash.exe).",
            details={"searched": search},
        )
    raise ShellNotFoundError("No bash or sh executable found on PATH.", details={"searched": search})


class ShellRunner:
    """Execute scripts with ``<shell> -c`` and capture their output."""

    def __init__(self, shell_path: str | None = None, *, timeout: float | None = None) -> None:
        self.shell = find_shell(shell_path)
        self.timeout = timeout

    def run(self, script: str, cwd: Path) -> RunResult:
        command = [self.shell, "-c", script]
        LOGGER.debug("Running script with %s in %s", self.shell, cwd)
        try:
            process = subprocess.run(  # noqa: S603 - shell path resolved from configuration
                command,
                cwd=cwd,
                capture_output=True,
                text=False,
                check=False,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired:
            return RunResult(success=False, error=f"Script timed out after {self.timeout} seconds.")
        except OSError as error:
            return RunResult(success=False, error=f"Failed to start {self.shell}: {error}")

        stdout = process.stdout.decode("utf-8", errors="replace") if process.stdout else ""
        stderr = process.stderr.decode("utf-8", errors="replace") if process.stderr else ""
        return RunResult(
            success=process.returncode == 0,
            output=stdout,
            error=stderr,
            returncode=process.returncode,
        )


__all__ = [
    "RunResult",
    "ScriptRunner",
    "ShellRunner",
    "WINDOWS_BASH_CANDIDATES",
    "find_shell",
]
