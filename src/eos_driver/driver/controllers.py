"""Controllers for driver CLI commands."""

from __future__ import annotations

import logging
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path

from eos_driver.config import Settings
from eos_driver.driver.commands import plan_commands
from eos_driver.driver.errors import ArgumentError, LoggingError, WorkflowAbortedError
from eos_driver.driver.models import (
    AgentCommand,
    FinalSummary,
    RunConfig,
    RunMode,
    Stage,
    StageOutcome,
    StageStatus,
)
from eos_driver.driver.recorder import CheckpointLog, OutcomeRecorder, TraceFile, read_checkpoints
from eos_driver.driver.sequencer import StageSequencer
from eos_driver.driver.session import AgentSession, HttpAgentSession

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_STAGE_FAILURE = 1
EXIT_INVALID_ARGUMENTS = 2
EXIT_LOGGING_ERROR = 3

PAUSE_PROMPT = "Press Enter to continue with /create-tasks... "


@dataclass(slots=True)
class DriverRunCommand:
    """CLI input for one workflow run."""

    spec: str | None
    conversation_id: str | None = None
    dry_run: bool = False
    output_path: Path | None = None
    checkpoint_path: Path | None = None
    poll_interval_seconds: float | None = None
    stage_timeout_seconds: float | None = None
    pause_after_spec: bool = False


@dataclass(slots=True)
class DriverCheckpointsCommand:
    """CLI input for checkpoint log inspection."""

    checkpoint_path: Path | None
    run_id: str | None
    limit: int = 50


@dataclass(slots=True)
class DriverRunResult:
    """Report and exit code to hand back to the CLI."""

    lines: list[str]
    exit_code: int
    summary: FinalSummary | None = None


@dataclass(slots=True)
class CancelToken:
    """Set by signal handlers; checked by the sequencer between stages."""

    requested: bool = False
    signal_name: str | None = None
    _signals_seen: int = field(default=0, repr=False)

    def __call__(self) -> bool:
        return self.requested


def build_http_session(settings: Settings) -> AgentSession:
    """Default session factory used by the CLI."""

    return HttpAgentSession(
        base_url=settings.agent.base_url,
        api_token=settings.agent.api_token,
        request_timeout_seconds=settings.agent.request_timeout_seconds,
        max_attempts=settings.agent.max_attempts,
        retry_base_seconds=settings.agent.retry_base_seconds,
        retry_max_seconds=settings.agent.retry_max_seconds,
    )


class DriverCliController:
    """Coordinates settings, session, recorder and sequencer for the CLI."""

    def __init__(
        self,
        *,
        session_factory: Callable[[Settings], AgentSession] = build_http_session,
        wait_for_operator: Callable[[str], object] = input,
        progress: Callable[[str], object] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.wait_for_operator = wait_for_operator
        self.progress = progress

    def run(self, command: DriverRunCommand) -> DriverRunResult:
        settings = self._settings_for(command)
        config = RunConfig(
            conversation_id=command.conversation_id,
            mode=RunMode.DRY_RUN if command.dry_run else RunMode.AUTOMATED,
            poll_interval_seconds=settings.stage.poll_interval_seconds,
            stage_timeout_seconds=settings.stage.timeout_seconds,
        )

        lines: list[str] = []
        if command.dry_run:
            lines.append("Dry run - planned commands:")
            lines.extend(f"  {planned.prompt}" for planned in plan_commands(command.spec))

        before_stage, after_stage = self._stage_hooks(pause_after_spec=command.pause_after_spec)
        with (
            _recorder(settings.checkpoint_path, command.output_path) as recorder,
            self._session(settings, dry_run=command.dry_run) as session,
            _cancel_on_signals() as cancel_token,
        ):
            sequencer = StageSequencer(
                session=session,
                recorder=recorder,
                cancel_requested=cancel_token,
                before_stage=before_stage,
                after_stage=after_stage,
            )
            try:
                summary = sequencer.run(command.spec, config)
            except WorkflowAbortedError as error:
                lines.extend(_render_outcomes(error.summary.stage_outcomes))
                lines.append(f"EOS run {error.summary.run_id} aborted at {error.stage.value}.")
                lines.append(f"Error: {error.error_detail}")
                lines.extend(_render_logging_errors(error.summary))
                lines.append(f"Checkpoint log: {settings.checkpoint_path}")
                return DriverRunResult(
                    lines=lines,
                    exit_code=EXIT_STAGE_FAILURE,
                    summary=error.summary,
                )

        lines.extend(_render_outcomes(summary.stage_outcomes))
        lines.extend(_render_completion(summary, dry_run=command.dry_run))
        if command.output_path is not None and not summary.logging_errors:
            lines.append(f"Saved trace to {command.output_path}")
        lines.extend(_render_logging_errors(summary))
        exit_code = EXIT_LOGGING_ERROR if summary.logging_errors else EXIT_OK
        return DriverRunResult(lines=lines, exit_code=exit_code, summary=summary)

    def checkpoints(self, command: DriverCheckpointsCommand) -> DriverRunResult:
        try:
            settings = Settings.from_env(checkpoint_path=command.checkpoint_path)
        except ValueError as error:
            raise ArgumentError(str(error)) from error
        try:
            entries = read_checkpoints(settings.checkpoint_path, run_id=command.run_id)
        except LoggingError as error:
            return DriverRunResult(lines=[f"Error: {error}"], exit_code=EXIT_LOGGING_ERROR)
        if not entries:
            return DriverRunResult(
                lines=[f"No checkpoint entries in {settings.checkpoint_path}."],
                exit_code=EXIT_OK,
            )
        shown = entries[-command.limit :]
        lines = [
            f"Checkpoint entries: shown={len(shown)} total={len(entries)} "
            f"path={settings.checkpoint_path}",
        ]
        lines.extend(
            f"{entry.timestamp.isoformat()} run={entry.run_id} stage={entry.stage.value} "
            f"status={entry.status.value} {entry.summary}"
            for entry in shown
        )
        return DriverRunResult(lines=lines, exit_code=EXIT_OK)

    def _settings_for(self, command: DriverRunCommand) -> Settings:
        try:
            settings = Settings.from_env(checkpoint_path=command.checkpoint_path)
            if command.poll_interval_seconds is not None:
                settings.stage.poll_interval_seconds = command.poll_interval_seconds
            if command.stage_timeout_seconds is not None:
                settings.stage.timeout_seconds = command.stage_timeout_seconds
            settings.validate_for_run(dry_run=command.dry_run)
        except ValueError as error:
            raise ArgumentError(str(error)) from error
        if not command.dry_run and not (command.spec or "").strip():
            raise ArgumentError("--spec is required.")
        return settings

    @contextmanager
    def _session(self, settings: Settings, *, dry_run: bool) -> Iterator[AgentSession | None]:
        if dry_run:
            yield None
            return
        session = self.session_factory(settings)
        try:
            yield session
        finally:
            close = getattr(session, "close", None)
            if callable(close):
                close()

    def _stage_hooks(
        self,
        *,
        pause_after_spec: bool,
    ) -> tuple[
        Callable[[Stage, AgentCommand], None],
        Callable[[Stage, StageOutcome], None],
    ]:
        reported: set[str] = set()

        def _before(_: Stage, command: AgentCommand) -> None:
            self._report(f"--- Running {command.prompt} ---")

        def _after(stage: Stage, outcome: StageOutcome) -> None:
            if outcome.conversation_id and outcome.conversation_id not in reported:
                reported.add(outcome.conversation_id)
                self._report(f"[agent] conversation {outcome.conversation_id}")
            if pause_after_spec and stage == Stage.SPEC_CREATION:
                self.wait_for_operator(PAUSE_PROMPT)

        return _before, _after

    def _report(self, line: str) -> None:
        if self.progress is not None:
            self.progress(line)


@contextmanager
def _recorder(checkpoint_path: Path, trace_path: Path | None) -> Iterator[OutcomeRecorder]:
    recorder = OutcomeRecorder(
        checkpoint_log=CheckpointLog(checkpoint_path),
        trace_file=TraceFile(trace_path) if trace_path is not None else None,
    )
    with recorder:
        yield recorder


@contextmanager
def _cancel_on_signals() -> Iterator[CancelToken]:
    token = CancelToken()
    if not hasattr(signal, "SIGINT"):
        yield token
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        token._signals_seen += 1
        if token._signals_seen > 1:
            raise KeyboardInterrupt
        token.requested = True
        token.signal_name = name
        logger.warning(
            "%s received; remaining stages will be skipped after the current one. "
            "Send again to abort immediately.",
            name,
        )

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        installed = True
    except ValueError:
        # Signal handlers can only be installed in main thread.
        installed = False
    try:
        yield token
    finally:
        if installed:
            signal.signal(signal.SIGINT, original_sigint)
            signal.signal(signal.SIGTERM, original_sigterm)


def _render_outcomes(outcomes: list[StageOutcome]) -> list[str]:
    lines: list[str] = []
    for outcome in outcomes:
        line = f"{outcome.stage.value}: {outcome.status.value}"
        if outcome.command and outcome.status != StageStatus.FAILED:
            line = f"{line} command={outcome.command}"
        if outcome.result_id:
            line = f"{line} result_id={outcome.result_id}"
        if outcome.status != StageStatus.SUCCEEDED and outcome.failure_class is not None:
            line = f"{line} failure_class={outcome.failure_class.value}"
        lines.append(line)
    return lines


def _render_completion(summary: FinalSummary, *, dry_run: bool) -> list[str]:
    if dry_run:
        return [f"EOS dry run {summary.run_id} complete. No commands were sent."]
    lines = [
        f"EOS run {summary.run_id} complete. Conversation ID: {summary.conversation_id or '-'}",
    ]
    final = summary.stage_outcomes[-1].raw_response if summary.stage_outcomes else {}
    if final.get("total_cost_usd") is not None:
        lines.append(f"Total cost (USD): {final['total_cost_usd']}")
    if final.get("duration_ms") is not None:
        lines.append(f"Duration (ms): {final['duration_ms']}")
    return lines


def _render_logging_errors(summary: FinalSummary) -> list[str]:
    return [f"Warning: {error}" for error in summary.logging_errors]
