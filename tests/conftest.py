from __future__ import annotations

import shutil
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from clipapply.tools.shell import RunResult  # noqa: E402

SCENARIO_A = (
    "git apply --3way <<'EOF'\n"
    "diff --git a/x.txt b/x.txt\n"
    "--- a/x.txt\n"
    "+++ b/x.txt\n"
    "@@ -1,2 +1,2 @@\n"
    "-old\n"
    "+new\n"
    " line2\n"
    "EOF"
)

SCENARIO_B = (
    "git apply <<'EOF'\n"
    "diff --git a/nested/dir/y.txt b/nested/dir/y.txt\n"
    "new file mode 100644\n"
    "index 0000000..1111111\n"
    "--- /dev/null\n"
    "+++ b/nested/dir/y.txt\n"
    "@@ -0,0 +1,2 @@\n"
    "+first\n"
    "+second\n"
    "EOF"
)

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git executable not available")


@dataclass(slots=True)
class FakeRunner:
    """Script runner double recording every invocation."""

    success: bool
    error: str = "error: patch failed: x.txt:1"
    calls: List[Tuple[str, Path]] = field(default_factory=list)

    def run(self, script: str, cwd: Path) -> RunResult:
        self.calls.append((script, cwd))
        if self.success:
            return RunResult(success=True, output="", returncode=0)
        return RunResult(success=False, error=self.error, returncode=1)


@pytest.fixture()
def failing_runner() -> FakeRunner:
    return FakeRunner(success=False)


@pytest.fixture()
def passing_runner() -> FakeRunner:
    return FakeRunner(success=True)


def init_repo(repo_root: Path) -> None:
    """Initialise a git repository with a committer identity."""

    def run_git(*cmd: str) -> None:
        subprocess.run(
            ["git", *cmd],
            cwd=repo_root,
            check=True,
            capture_output=True,
            text=True,
        )

    run_git("init")
    run_git("config", "user.email", "dev@example.com")
    run_git("config", "user.name", "Clip Apply")
