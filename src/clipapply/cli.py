"""CLI commands for applying pasted change-scripts to a working tree."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer

from .config import ClipApplyConfig, load_config
from .errors import ConfigError, NoScriptFound, ShellNotFoundError
from .orchestrator import FallbackOrchestrator, OutcomeStatus, PatchOutcome
from .tools.diff_parser import parse_diff
from .tools.patch import ApplyStrategy
from .tools.script import ScriptText, contains_apply_command, extract_diff_blocks, extract_script
from .tools.shell import ShellRunner
from .tools.vcs import GitError, GitRepository

APP_HELP = "Apply git patches pasted from the clipboard, forcing them onto disk when git apply fails."
RESET_WARNING = "This will run `git reset --hard` and discard ALL local changes. Are you sure?"

LOGGER = logging.getLogger(__name__)

app = typer.Typer(help=APP_HELP)


@app.callback()
def main(
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Logging level for diagnostics and telemetry (DEBUG, INFO, WARNING, ...).",
    ),
) -> None:
    """Configure logging before running a command."""
    level = getattr(logging, log_level.upper(), None)
    if not isinstance(level, int):
        raise typer.BadParameter(f"Unknown log level: {log_level}")
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _read_source(source: Optional[Path]) -> str:
    """Read pasted text from ``source`` or stdin."""
    if source is None or str(source) == "-":
        return typer.get_text_stream("stdin").read()
    try:
        return source.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as error:
        typer.echo(f"Failed to read {source}: {error}")
        raise typer.Exit(code=1) from error


def _load(config: Optional[str], root: Path) -> ClipApplyConfig:
    try:
        return load_config(config, root=root)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error


def _extract(text: str) -> ScriptText:
    try:
        return extract_script(text)
    except NoScriptFound as error:
        typer.echo("Input is empty.")
        raise typer.Exit(code=1) from error


def _render_outcome(outcome: PatchOutcome) -> None:
    typer.echo(f"Outcome: {outcome.status.value}")
    typer.echo(outcome.message)
    for report in outcome.reports:
        typer.echo(
            f"- {report.path}: {report.action} "
            f"(applied {report.applied}, skipped {report.skipped}, blind {report.blind})"
        )
    if outcome.diagnostics:
        typer.echo("Diagnostics:")
        for diagnostic in outcome.diagnostics:
            typer.echo(f"  - {diagnostic.render()}")
    if outcome.status is OutcomeStatus.FAILED and outcome.run is not None and outcome.run.output.strip():
        typer.echo("Script output:")
        typer.echo(outcome.run.output.rstrip())


def _render_changes(root: Path) -> None:
    if not (root / ".git").exists():
        return
    try:
        changed = GitRepository(root).changed_paths()
    except GitError as error:
        LOGGER.warning("Unable to list working tree changes: %s", error)
        return
    if changed:
        typer.echo("Working tree changes:")
        for path in changed:
            typer.echo(f"  {path}")


@app.command()
def apply(
    source: Optional[Path] = typer.Argument(
        None,
        help="File holding the pasted text; reads stdin when omitted or '-'.",
    ),
    root: Path = typer.Option(Path("."), "--root", "-r", help="Working tree to patch."),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to the configuration file (defaults to clipapply.yaml in the root).",
    ),
    force: Optional[bool] = typer.Option(
        None,
        "--force/--no-force",
        help="Override apply.force_overwrite for this run.",
    ),
    strategy: Optional[ApplyStrategy] = typer.Option(
        None,
        "--strategy",
        help="Override apply.strategy for the forced fallback.",
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Run without confirmation prompts."),
) -> None:
    """Run the pasted script, forcing its diff onto disk if it fails."""
    root_path = root.resolve()
    settings = _load(config, root_path)
    apply_settings = settings.apply
    if force is not None:
        apply_settings = apply_settings.model_copy(update={"force_overwrite": force})
    if strategy is not None:
        apply_settings = apply_settings.model_copy(update={"strategy": strategy})

    raw = _read_source(source)
    script = _extract(raw)
    if not contains_apply_command(raw):
        if not yes and not typer.confirm('Input does not contain a "git apply" command. Run anyway?'):
            typer.echo("Cancelled.")
            raise typer.Exit(code=1)

    if apply_settings.auto_reset_on_apply:
        try:
            summary = GitRepository(root_path).reset_hard()
        except GitError as error:
            typer.echo(f"git reset --hard failed: {error}")
            raise typer.Exit(code=1) from error
        typer.echo(summary or "Working tree reset.")

    try:
        runner = ShellRunner(settings.shell.path, timeout=settings.shell.timeout)
    except ShellNotFoundError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error

    orchestrator = FallbackOrchestrator(runner, apply_settings, root=root_path)
    outcome = orchestrator.run(script)
    _render_outcome(outcome)
    if not outcome.ok:
        raise typer.Exit(code=1)
    _render_changes(root_path)


@app.command()
def parse(
    source: Optional[Path] = typer.Argument(
        None,
        help="File holding the pasted text; reads stdin when omitted or '-'.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Emit the parsed structure as JSON."),
) -> None:
    """Show the files and hunks a forced apply would touch, without writing."""
    script = _extract(_read_source(source))
    blocks = extract_diff_blocks(script)
    results = [parse_diff(block) for block in blocks]

    if as_json:
        payload = [
            {
                "source": block.source,
                "files": [
                    {
                        "path": patch.path,
                        "change_type": patch.change_type,
                        "hunks": [
                            {
                                "old_start": hunk.old_start,
                                "old_count": hunk.old_count,
                                "new_start": hunk.new_start,
                                "new_count": hunk.new_count,
                                "lines": hunk.lines,
                            }
                            for hunk in patch.hunks
                        ],
                    }
                    for patch in result.files.values()
                ],
                "diagnostics": [diagnostic.render() for diagnostic in result.diagnostics],
            }
            for block, result in zip(blocks, results)
        ]
        typer.echo(json.dumps(payload, indent=2))
        return

    if not blocks:
        typer.echo("No diff payload found.")
        raise typer.Exit(code=1)
    for number, (block, result) in enumerate(zip(blocks, results), start=1):
        typer.echo(f"Block {number} ({block.source}):")
        for patch in result.files.values():
            typer.echo(f"- {patch.path} [{patch.change_type}] {len(patch.hunks)} hunk(s)")
            for hunk in patch.hunks:
                typer.echo(
                    f"    @@ -{hunk.old_start},{hunk.old_count} +{hunk.new_start},{hunk.new_count} @@ "
                    f"({len(hunk.lines)} replacement line(s))"
                )
        for diagnostic in result.diagnostics:
            typer.echo(f"  ! {diagnostic.render()}")


@app.command()
def reset(
    root: Path = typer.Option(Path("."), "--root", "-r", help="Working tree to reset."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip the confirmation prompt."),
) -> None:
    """Run ``git reset --hard`` after explicit confirmation."""
    if not yes and not typer.confirm(RESET_WARNING):
        typer.echo("Cancelled.")
        raise typer.Exit(code=1)
    try:
        summary = GitRepository(root.resolve()).reset_hard()
    except GitError as error:
        typer.echo(f"git reset --hard failed: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(summary or "Working tree reset.")


if __name__ == "__main__":
    app()
