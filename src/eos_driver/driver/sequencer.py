"""Fixed-order stage sequencing with abort-on-failure semantics."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import replace
from typing import NoReturn
from uuid import uuid4

from eos_driver.driver.commands import DRY_RUN_SPEC_PLACEHOLDER, build_command
from eos_driver.driver.errors import (
    AgentFailure,
    ArgumentError,
    CommunicationError,
    ProtocolViolation,
    WorkflowAbortedError,
)
from eos_driver.driver.models import (
    STAGE_ORDER,
    AgentCommand,
    CheckpointEntry,
    FailureClass,
    FinalSummary,
    RunConfig,
    RunMode,
    RunStatus,
    Stage,
    StageOutcome,
    StageStatus,
    WorkflowRun,
)
from eos_driver.driver.recorder import OutcomeRecorder
from eos_driver.driver.session.base import AgentSession
from eos_driver.time_utils import utc_now

logger = logging.getLogger(__name__)

CANCELED_DETAIL = "Run canceled before stage start."


class StageSequencer:
    """Runs spec creation, task planning and task execution in order."""

    def __init__(
        self,
        *,
        session: AgentSession | None,
        recorder: OutcomeRecorder,
        cancel_requested: Callable[[], bool] | None = None,
        before_stage: Callable[[Stage, AgentCommand], None] | None = None,
        after_stage: Callable[[Stage, StageOutcome], None] | None = None,
    ) -> None:
        self.session = session
        self.recorder = recorder
        self.cancel_requested = cancel_requested
        self.before_stage = before_stage
        self.after_stage = after_stage

    def run(self, spec_text: str | None, config: RunConfig) -> FinalSummary:
        """Execute one fresh run; raise ``WorkflowAbortedError`` if it aborts."""

        run = self._start_run(spec_text, config)
        log = _RunLogger(logger, run.run_id)
        log.info("Starting %s run", run.mode.value)

        outcomes: list[StageOutcome] = []
        for position, stage in enumerate(STAGE_ORDER):
            if self._is_canceled():
                self._cancel(run, outcomes, remaining=STAGE_ORDER[position:])

            command = build_command(stage, run.spec_text, outcomes)
            if run.dry_run:
                outcome = _skipped(stage, command, summary="dry run")
            else:
                outcome = self._execute_stage(run, command, config)
            outcomes.append(outcome)
            self._record(run, outcome)

            if outcome.status == StageStatus.FAILED:
                log.error("Stage %s failed: %s", stage.value, outcome.error_detail)
                summary = self._summary(run, RunStatus.ABORTED, outcomes)
                raise WorkflowAbortedError(
                    stage=stage,
                    error_detail=outcome.error_detail or "unknown error",
                    summary=summary,
                )
            if outcome.succeeded:
                log.info("Stage %s succeeded", stage.value)
                if self.after_stage is not None:
                    self.after_stage(stage, outcome)

        log.info("Run completed")
        return self._summary(run, RunStatus.COMPLETED, outcomes)

    def _start_run(self, spec_text: str | None, config: RunConfig) -> WorkflowRun:
        dry_run = config.mode == RunMode.DRY_RUN
        text = spec_text or ""
        if not text.strip():
            if not dry_run:
                raise ArgumentError("Spec text is required.")
            text = DRY_RUN_SPEC_PLACEHOLDER
        if not dry_run and self.session is None:
            raise ArgumentError("An agent session is required outside dry-run mode.")
        for label, value in (
            ("Poll interval", config.poll_interval_seconds),
            ("Stage timeout", config.stage_timeout_seconds),
        ):
            if not (math.isfinite(value) and value > 0):
                raise ArgumentError(f"{label} must be a finite number > 0.")
        return WorkflowRun(
            run_id=uuid4().hex,
            spec_text=text,
            mode=config.mode,
            created_at=utc_now(),
            conversation_id=config.conversation_id or None,
        )

    def _execute_stage(
        self,
        run: WorkflowRun,
        command: AgentCommand,
        config: RunConfig,
    ) -> StageOutcome:
        if self.session is None:
            raise RuntimeError("Session is required to execute stages.")
        command = replace(command, conversation_id=run.conversation_id)
        if self.before_stage is not None:
            self.before_stage(command.stage, command)
        try:
            handle = self.session.send(command)
            outcome = self.session.await_completion(
                handle,
                poll_interval=config.poll_interval_seconds,
                timeout=config.stage_timeout_seconds,
            )
        except CommunicationError as error:
            return _failed(command, FailureClass.COMMUNICATION, str(error))
        except AgentFailure as error:
            return _failed(command, FailureClass.AGENT_FAILURE, str(error))

        outcome.command = command.prompt
        if outcome.succeeded:
            try:
                run.establish_conversation(outcome.conversation_id)
            except ProtocolViolation as error:
                outcome.status = StageStatus.FAILED
                outcome.failure_class = FailureClass.PROTOCOL_VIOLATION
                outcome.error_detail = str(error)
        return outcome

    def _cancel(
        self,
        run: WorkflowRun,
        outcomes: list[StageOutcome],
        *,
        remaining: tuple[Stage, ...],
    ) -> NoReturn:
        _RunLogger(logger, run.run_id).warning(
            "Cancellation requested; skipping %s",
            ", ".join(stage.value for stage in remaining),
        )
        for stage in remaining:
            outcome = StageOutcome(
                stage=stage,
                status=StageStatus.SKIPPED,
                sent_at=None,
                completed_at=utc_now(),
                error_detail=CANCELED_DETAIL,
                failure_class=FailureClass.CANCELED,
            )
            outcomes.append(outcome)
            self._record(run, outcome)
        summary = self._summary(run, RunStatus.ABORTED, outcomes)
        raise WorkflowAbortedError(
            stage=remaining[0],
            error_detail=CANCELED_DETAIL,
            summary=summary,
        )

    def _record(self, run: WorkflowRun, outcome: StageOutcome) -> None:
        self.recorder.append(
            CheckpointEntry(
                run_id=run.run_id,
                stage=outcome.stage,
                status=outcome.status,
                timestamp=outcome.completed_at or utc_now(),
                summary=_entry_summary(outcome),
            ),
            outcome,
        )

    def _summary(
        self,
        run: WorkflowRun,
        status: RunStatus,
        outcomes: list[StageOutcome],
    ) -> FinalSummary:
        return FinalSummary(
            run_id=run.run_id,
            status=status,
            stage_outcomes=list(outcomes),
            conversation_id=run.conversation_id,
            logging_errors=list(self.recorder.errors),
        )

    def _is_canceled(self) -> bool:
        return self.cancel_requested is not None and self.cancel_requested()


class _RunLogger(logging.LoggerAdapter):
    """Attach ``run_id`` to every record emitted for one run."""

    def __init__(self, base: logging.Logger, run_id: str) -> None:
        super().__init__(base, {"run_id": run_id})

    def process(self, msg, kwargs):
        kwargs.setdefault("extra", {}).update(self.extra)
        return msg, kwargs


def _skipped(stage: Stage, command: AgentCommand, *, summary: str) -> StageOutcome:
    return StageOutcome(
        stage=stage,
        status=StageStatus.SKIPPED,
        sent_at=None,
        completed_at=utc_now(),
        raw_response={"dry_run": True, "summary": summary},
        command=command.prompt,
    )


def _failed(command: AgentCommand, failure_class: FailureClass, detail: str) -> StageOutcome:
    return StageOutcome(
        stage=command.stage,
        status=StageStatus.FAILED,
        sent_at=None,
        completed_at=utc_now(),
        error_detail=detail,
        failure_class=failure_class,
        conversation_id=command.conversation_id,
        command=command.prompt,
    )


def _entry_summary(outcome: StageOutcome) -> str:
    if outcome.status == StageStatus.SUCCEEDED:
        parts = [f"command={outcome.command or '-'}"]
        if outcome.result_id:
            parts.append(f"result_id={outcome.result_id}")
        if outcome.conversation_id:
            parts.append(f"conversation={outcome.conversation_id}")
        return " ".join(parts)
    if outcome.status == StageStatus.SKIPPED:
        reason = outcome.error_detail or "dry run"
        return f"skipped: {reason} command={outcome.command or '-'}"
    failure = outcome.failure_class.value if outcome.failure_class else "failed"
    return f"{failure}: {outcome.error_detail or 'unknown error'}"
