from __future__ import annotations

from pathlib import Path

import pytest

from clipapply.tools.vcs import GitError, GitRepository
from conftest import init_repo, requires_git


def _committed_repo(root: Path) -> GitRepository:
    init_repo(root)
    repo = GitRepository(root)
    (root / "tracked.txt").write_text("base\n", encoding="utf-8")
    repo.git("add", ".")
    repo.git("commit", "-m", "initial")
    return repo


def test_non_repository_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(GitError, match="Not a git repository"):
        GitRepository(tmp_path)


@requires_git
def test_reset_hard_discards_tracked_edits(tmp_path: Path) -> None:
    repo = _committed_repo(tmp_path)
    (tmp_path / "tracked.txt").write_text("edited\n", encoding="utf-8")

    summary = repo.reset_hard()

    assert summary.startswith("HEAD is now at")
    assert (tmp_path / "tracked.txt").read_text(encoding="utf-8") == "base\n"


@requires_git
def test_changed_paths_lists_modified_and_untracked(tmp_path: Path) -> None:
    repo = _committed_repo(tmp_path)
    (tmp_path / "tracked.txt").write_text("edited\n", encoding="utf-8")
    (tmp_path / "nested" / "dir").mkdir(parents=True)
    (tmp_path / "nested" / "dir" / "y.txt").write_text("new\n", encoding="utf-8")

    assert repo.changed_paths() == ["nested/dir/y.txt", "tracked.txt"]
    assert repo.changed_paths(include_untracked=False) == ["tracked.txt"]


@requires_git
def test_failed_git_command_raises(tmp_path: Path) -> None:
    init_repo(tmp_path)
    repo = GitRepository(tmp_path)

    with pytest.raises(GitError, match="git reset --hard no-such-revision failed"):
        repo.git("reset", "--hard", "no-such-revision")
