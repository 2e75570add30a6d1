from __future__ import annotations

import json
import shutil
from pathlib import Path

import pytest
from typer.testing import CliRunner

from clipapply.cli import app
from clipapply.tools.vcs import GitRepository
from conftest import SCENARIO_A, SCENARIO_B, FakeRunner, init_repo, requires_git


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("CLIPAPPLY_FORCE_OVERWRITE", raising=False)
    monkeypatch.delenv("CLIPAPPLY_SHELL", raising=False)


@pytest.fixture()
def fake_runner(monkeypatch: pytest.MonkeyPatch) -> FakeRunner:
    runner = FakeRunner(success=False)
    monkeypatch.setattr("clipapply.cli.ShellRunner", lambda path=None, timeout=None: runner)
    return runner


def _paste(root: Path, text: str) -> Path:
    source = root / "clipboard.txt"
    source.write_text(text, encoding="utf-8")
    return source


def test_apply_forces_stale_file(tmp_path: Path, fake_runner: FakeRunner) -> None:
    target = tmp_path / "x.txt"
    target.write_text("stale\nline2\n", encoding="utf-8")
    source = _paste(tmp_path, "Try this:\n```bash\n" + SCENARIO_A + "\n```\n")

    result = CliRunner().invoke(
        app,
        ["apply", str(source), "--root", str(tmp_path), "--force"],
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Outcome: forced" in result.output
    assert "- x.txt: modified (applied 1, skipped 0, blind 1)" in result.output
    assert target.read_text(encoding="utf-8") == "new\nline2\n"
    assert fake_runner.calls[0][0] == SCENARIO_A


def test_apply_without_force_leaves_file_alone(tmp_path: Path, fake_runner: FakeRunner) -> None:
    target = tmp_path / "x.txt"
    target.write_text("stale\nline2\n", encoding="utf-8")

    result = CliRunner().invoke(
        app,
        ["apply", "--root", str(tmp_path), "--no-force"],
        input=SCENARIO_A,
        catch_exceptions=False,
    )

    assert result.exit_code == 1
    assert "Outcome: failed" in result.output
    assert "patch failed" in result.output
    assert target.read_text(encoding="utf-8") == "stale\nline2\n"


def test_apply_reads_force_setting_from_config(tmp_path: Path, fake_runner: FakeRunner) -> None:
    (tmp_path / "clipapply.yaml").write_text("apply:\n  force_overwrite: true\n", encoding="utf-8")

    result = CliRunner().invoke(
        app,
        ["apply", "--root", str(tmp_path)],
        input=SCENARIO_B,
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Forced apply wrote 1 file(s): nested/dir/y.txt" in result.output
    assert (tmp_path / "nested/dir/y.txt").read_text(encoding="utf-8") == "first\nsecond\n"


def test_apply_rejects_invalid_config(tmp_path: Path, fake_runner: FakeRunner) -> None:
    (tmp_path / "clipapply.yaml").write_text("apply:\n  force: true\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["apply", "--root", str(tmp_path)], input=SCENARIO_A)

    assert result.exit_code == 1
    assert "Invalid configuration" in result.output
    assert fake_runner.calls == []


def test_apply_asks_before_running_text_without_git_apply(tmp_path: Path, fake_runner: FakeRunner) -> None:
    source = _paste(tmp_path, "echo hello")

    result = CliRunner().invoke(app, ["apply", str(source), "--root", str(tmp_path)], input="n\n")

    assert result.exit_code == 1
    assert 'does not contain a "git apply" command' in result.output
    assert "Cancelled." in result.output
    assert fake_runner.calls == []


def test_apply_yes_skips_prompt(tmp_path: Path, fake_runner: FakeRunner) -> None:
    fake_runner.success = True
    source = _paste(tmp_path, "echo hello")

    result = CliRunner().invoke(app, ["apply", str(source), "--root", str(tmp_path), "--yes"])

    assert result.exit_code == 0, result.output
    assert "Outcome: clean" in result.output
    assert fake_runner.calls[0][0] == "echo hello"


@pytest.mark.parametrize("text", ["echo hi && git apply fix.patch", "GIT APPLY fix.patch"])
def test_apply_mentioning_git_apply_anywhere_runs_without_prompt(
    tmp_path: Path, fake_runner: FakeRunner, text: str
) -> None:
    fake_runner.success = True
    source = _paste(tmp_path, text)

    result = CliRunner().invoke(app, ["apply", str(source), "--root", str(tmp_path)], input="n\n")

    assert result.exit_code == 0, result.output
    assert "Run anyway?" not in result.output
    assert "Outcome: clean" in result.output
    assert fake_runner.calls[0][0] == text


def test_apply_empty_input(tmp_path: Path, fake_runner: FakeRunner) -> None:
    result = CliRunner().invoke(app, ["apply", "--root", str(tmp_path)], input="   \n")

    assert result.exit_code == 1
    assert "Input is empty." in result.output


def test_parse_lists_files_and_hunks() -> None:
    result = CliRunner().invoke(app, ["parse"], input=SCENARIO_B, catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "Block 1 (heredoc):" in result.output
    assert "- nested/dir/y.txt [add] 1 hunk(s)" in result.output
    assert "@@ -0,0 +1,2 @@ (2 replacement line(s))" in result.output


def test_parse_json_output() -> None:
    result = CliRunner().invoke(app, ["parse", "--json"], input=SCENARIO_A, catch_exceptions=False)

    assert result.exit_code == 0
    payload = json.loads(result.stdout)
    (block,) = payload
    assert block["source"] == "heredoc"
    assert block["files"][0]["path"] == "x.txt"
    assert block["files"][0]["hunks"][0]["lines"] == ["new", "line2"]
    assert block["diagnostics"] == []


def test_parse_without_payload() -> None:
    result = CliRunner().invoke(app, ["parse"], input="git apply fix.patch")

    assert result.exit_code == 1
    assert "No diff payload found." in result.output


def test_reset_requires_confirmation(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["reset", "--root", str(tmp_path)], input="n\n")

    assert result.exit_code == 1
    assert "discard ALL local changes" in result.output
    assert "Cancelled." in result.output


def test_reset_outside_repository_fails(tmp_path: Path) -> None:
    result = CliRunner().invoke(app, ["reset", "--root", str(tmp_path), "--yes"])

    assert result.exit_code == 1
    assert "Not a git repository" in result.output


@requires_git
def test_reset_discards_changes(tmp_path: Path) -> None:
    init_repo(tmp_path)
    repo = GitRepository(tmp_path)
    (tmp_path / "x.txt").write_text("old\nline2\n", encoding="utf-8")
    repo.git("add", ".")
    repo.git("commit", "-m", "initial")
    (tmp_path / "x.txt").write_text("scribbled\n", encoding="utf-8")

    result = CliRunner().invoke(app, ["reset", "--root", str(tmp_path), "--yes"], catch_exceptions=False)

    assert result.exit_code == 0, result.output
    assert "HEAD is now at" in result.output
    assert (tmp_path / "x.txt").read_text(encoding="utf-8") == "old\nline2\n"


@requires_git
@pytest.mark.skipif(shutil.which("bash") is None, reason="bash executable not available")
def test_apply_end_to_end_with_real_git(tmp_path: Path) -> None:
    init_repo(tmp_path)
    repo = GitRepository(tmp_path)
    (tmp_path / "x.txt").write_text("stale\nline2\n", encoding="utf-8")
    repo.git("add", ".")
    repo.git("commit", "-m", "initial")

    result = CliRunner().invoke(
        app,
        ["apply", "--root", str(tmp_path), "--force"],
        input=SCENARIO_A,
        catch_exceptions=False,
    )

    assert result.exit_code == 0, result.output
    assert "Outcome: forced" in result.output
    assert "Working tree changes:" in result.output
    assert "  x.txt" in result.output
    assert (tmp_path / "x.txt").read_text(encoding="utf-8") == "new\nline2\n"
