"""Run a change-script normally and fall back to forced hunk application."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, List, Tuple

from .config import ApplySettings
from .errors import ExternalApplyFailed, NoDiffPayload, NoScriptFound, PatchError
from .tools.diff_parser import DiffParseResult, ParseDiagnostic, parse_diff
from .tools.patch import FileApplyReport, PatchApplier, emit_event
from .tools.script import ScriptText, extract_diff_blocks, extract_script
from .tools.shell import RunResult, ScriptRunner

LOGGER = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    """Tri-state result of one apply invocation."""

    CLEAN = "clean"
    FORCED = "forced"
    FAILED = "failed"


class ApplyState(str, Enum):
    """States visited by :class:`FallbackOrchestrator` during one invocation."""

    PENDING = "pending"
    CLEAN_SUCCESS = "clean-success"
    ATTEMPTING_FORCED = "attempting-forced"
    FORCED_SUCCESS = "forced-success"
    FAILED = "failed"


@dataclass(slots=True)
class PatchOutcome:
    """Outcome of applying a change-script."""

    status: OutcomeStatus
    message: str
    written_paths: Tuple[str, ...] = ()
    reports: Tuple[FileApplyReport, ...] = ()
    diagnostics: Tuple[ParseDiagnostic, ...] = ()
    error: PatchError | None = None
    run: RunResult | None = None

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "message": self.message,
            "written_paths": list(self.written_paths),
            "reports": [report.to_dict() for report in self.reports],
            "diagnostics": [diagnostic.render() for diagnostic in self.diagnostics],
            "error": type(self.error).__name__ if self.error is not None else None,
        }


class FallbackOrchestrator:
    """Sequence the normal apply and the forced fallback for one working tree."""

    def __init__(
        self,
        runner: ScriptRunner,
        settings: ApplySettings | None = None,
        *,
        root: Path | str = ".",
    ) -> None:
        self.runner = runner
        self.settings = settings or ApplySettings()
        self.root = Path(root).resolve()
        self.state = ApplyState.PENDING
        self.history: List[ApplyState] = [ApplyState.PENDING]

    def _transition(self, state: ApplyState) -> None:
        LOGGER.debug("Apply state %s -> %s", self.state.value, state.value)
        emit_event("state_transition", source=self.state, target=state, root=self.root)
        self.state = state
        self.history.append(state)

    def _fail(self, message: str, error: PatchError, **fields: Any) -> PatchOutcome:
        self._transition(ApplyState.FAILED)
        return PatchOutcome(status=OutcomeStatus.FAILED, message=message, error=error, **fields)

    def _reset(self) -> None:
        self.state = ApplyState.PENDING
        self.history = [ApplyState.PENDING]

    def apply_text(self, raw: str) -> PatchOutcome:
        """Extract the script from ``raw`` and run it."""
        self._reset()
        try:
            script = extract_script(raw)
        except NoScriptFound as error:
            return self._fail(str(error), error)
        return self.run(script)

    def run(self, script: ScriptText | str) -> PatchOutcome:
        """Run ``script``; on failure force its diff onto disk when allowed."""
        self._reset()
        text = script.text if isinstance(script, ScriptText) else script
        result = self.runner.run(text, self.root)
        if result.success:
            self._transition(ApplyState.CLEAN_SUCCESS)
            return PatchOutcome(status=OutcomeStatus.CLEAN, message="Patch applied cleanly.", run=result)

        external = ExternalApplyFailed(
            f"Script failed: {result.message}",
            details={"returncode": result.returncode, "output": result.output, "error": result.error},
        )
        LOGGER.info("Normal apply failed: %s", result.message)
        if not self.settings.force_overwrite:
            return self._fail(str(external), external, run=result)

        self._transition(ApplyState.ATTEMPTING_FORCED)
        outcome = self._force(text)
        outcome.run = result
        return outcome

    def force(self, script: ScriptText | str) -> PatchOutcome:
        """Skip the normal apply and force the script's diff onto disk."""
        self._reset()
        text = script.text if isinstance(script, ScriptText) else script
        self._transition(ApplyState.ATTEMPTING_FORCED)
        return self._force(text)

    def _force(self, text: str) -> PatchOutcome:
        blocks = extract_diff_blocks(text)
        results: List[DiffParseResult] = [parse_diff(block) for block in blocks]
        diagnostics = tuple(diagnostic for result in results for diagnostic in result.diagnostics)
        for diagnostic in diagnostics:
            LOGGER.warning("Diff parse: %s", diagnostic.render())

        if not any(result.has_changes for result in results):
            error = NoDiffPayload(
                "No diff payload found in the script.",
                details={"blocks": len(blocks)},
            )
            return self._fail(str(error), error, diagnostics=diagnostics)

        applier = PatchApplier(root=self.root, strategy=self.settings.strategy)
        try:
            for result in results:
                applier.apply_all(result.files.values())
        except PatchError as error:
            emit_event(
                "forced_apply_failed",
                error=str(error),
                written=applier.written_paths,
                details=error.details,
            )
            return self._fail(
                f"Forced apply failed: {error}",
                error,
                written_paths=applier.written_paths,
                reports=tuple(applier.reports),
                diagnostics=diagnostics,
            )

        self._transition(ApplyState.FORCED_SUCCESS)
        written = applier.written_paths
        if written:
            message = f"Forced apply wrote {len(written)} file(s): {', '.join(written)}"
        else:
            message = "Forced apply found every hunk already applied; nothing written."
        return PatchOutcome(
            status=OutcomeStatus.FORCED,
            message=message,
            written_paths=written,
            reports=tuple(applier.reports),
            diagnostics=diagnostics,
        )


__all__ = [
    "ApplyState",
    "FallbackOrchestrator",
    "OutcomeStatus",
    "PatchOutcome",
]
