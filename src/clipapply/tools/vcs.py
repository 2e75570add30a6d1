"""Git plumbing for the working tree a change-script targets.

Only two things are needed here: discarding local edits before an apply
and listing what an apply touched.
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Set

import subprocess


class GitError(RuntimeError):
    """Raised when git cannot be run or exits with an error."""


def _decode(payload: bytes | None) -> str:
    return payload.decode("utf-8", errors="replace") if payload else ""


class GitRepository:
    """A working tree with a ``.git`` entry at ``root``."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        if not (self.root / ".git").exists():
            raise GitError(f"Not a git repository: {self.root}")

    def git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Run ``git args...`` in the repository root with decoded output."""

        return self._invoke(args, check=check)

    def _invoke(self, args: Sequence[str], *, check: bool) -> subprocess.CompletedProcess[str]:
        try:
            raw = subprocess.run(
                ["git", *args],
                cwd=self.root,
                capture_output=True,
                check=False,
            )
        except OSError as error:
            raise GitError(f"Unable to run git: {error}") from error

        completed = subprocess.CompletedProcess(raw.args, raw.returncode, _decode(raw.stdout), _decode(raw.stderr))
        if check and completed.returncode != 0:
            reason = completed.stderr.strip() or completed.stdout.strip() or f"exit status {completed.returncode}"
            raise GitError(f"git {' '.join(args)} failed: {reason}")
        return completed

    # ----------------------------------------------------------------- reset
    def reset_hard(self) -> str:
        """Discard every tracked modification and return git's summary line."""

        return self.git("reset", "--hard").stdout.strip()

    # ---------------------------------------------------------------- status
    def changed_paths(self, *, include_untracked: bool = True) -> List[str]:
        """Return repository-relative POSIX paths with pending modifications."""

        porcelain = self.git("status", "--porcelain", "--untracked-files=all").stdout
        paths: Set[str] = set()
        for entry in porcelain.splitlines():
            if len(entry) < 4:
                continue
            code, name = entry[:2], entry[3:]
            if code == "??" and not include_untracked:
                continue
            # Renames are reported as "old -> new".
            _, _, renamed = name.partition(" -> ")
            paths.add((renamed or name).strip().strip('"'))
        return sorted(paths)


__all__ = ["GitError", "GitRepository"]
