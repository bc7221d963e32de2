from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import allure
import pytest

from eos_driver.driver.errors import ArgumentError, CommunicationError, WorkflowAbortedError
from eos_driver.driver.models import (
    AgentCommand,
    FailureClass,
    RunConfig,
    RunMode,
    RunStatus,
    Stage,
    StageOutcome,
    StageStatus,
    SubmissionHandle,
)
from eos_driver.driver.recorder import CheckpointLog, OutcomeRecorder, read_checkpoints
from eos_driver.driver.sequencer import CANCELED_DETAIL, StageSequencer
from eos_driver.driver.session import StubAgentSession
from eos_driver.time_utils import utc_now

pytestmark = [
    allure.epic("Workflow Driver"),
    allure.feature("Stage Sequencing"),
]

SPEC = "Add audit log table"


@dataclass
class _SendFailsSession:
    """Session whose submission never reaches the agent."""

    sent: list[AgentCommand] = field(default_factory=list)

    def send(self, command: AgentCommand) -> SubmissionHandle:
        self.sent.append(command)
        raise CommunicationError("POST /v1/commands failed (gave up after 5 attempts)", attempts=5)

    def await_completion(self, handle, *, poll_interval, timeout):  # pragma: no cover
        raise AssertionError("await_completion must not run after a failed send")


@dataclass
class _ConversationSwitchSession:
    """Succeeds every stage but reports a new conversation at planning."""

    def send(self, command: AgentCommand) -> SubmissionHandle:
        return SubmissionHandle(
            submission_id=f"sub-{command.stage.value}",
            stage=command.stage,
            sent_at=utc_now(),
            conversation_id=command.conversation_id,
        )

    def await_completion(self, handle, *, poll_interval, timeout) -> StageOutcome:
        conversation = "conv-1" if handle.stage == Stage.SPEC_CREATION else "conv-2"
        return StageOutcome(
            stage=handle.stage,
            status=StageStatus.SUCCEEDED,
            sent_at=handle.sent_at,
            completed_at=utc_now(),
            result_id=f"{handle.stage.value}-result",
            conversation_id=conversation,
        )


def _sequencer(session, recorder: OutcomeRecorder, **kwargs) -> StageSequencer:
    return StageSequencer(session=session, recorder=recorder, **kwargs)


def test_dry_run_skips_every_stage_without_network_calls(
    recorder: OutcomeRecorder,
    checkpoint_path: Path,
) -> None:
    stub = StubAgentSession()

    summary = _sequencer(stub, recorder).run(SPEC, RunConfig(mode=RunMode.DRY_RUN))

    assert summary.status == RunStatus.COMPLETED
    assert [outcome.status for outcome in summary.stage_outcomes] == [StageStatus.SKIPPED] * 3
    assert [outcome.command for outcome in summary.stage_outcomes] == [
        '/create-spec "Add audit log table"',
        "/create-tasks",
        "/execute-tasks",
    ]
    assert stub.network_calls == 0
    assert len(read_checkpoints(checkpoint_path)) == 3


def test_dry_run_without_spec_uses_placeholder(recorder: OutcomeRecorder) -> None:
    summary = _sequencer(None, recorder).run(None, RunConfig(mode=RunMode.DRY_RUN))

    assert summary.stage_outcomes[0].command == '/create-spec "<spec>"'


def test_stages_run_in_order_and_reference_prior_results(
    recorder: OutcomeRecorder,
    checkpoint_path: Path,
) -> None:
    stub = StubAgentSession()

    summary = _sequencer(stub, recorder).run(SPEC, RunConfig())

    assert summary.status == RunStatus.COMPLETED
    assert [call.stage for call in stub.calls] == [
        Stage.SPEC_CREATION,
        Stage.SPEC_CREATION,
        Stage.TASK_PLANNING,
        Stage.TASK_PLANNING,
        Stage.TASK_EXECUTION,
        Stage.TASK_EXECUTION,
    ]
    assert [call.kind for call in stub.calls] == ["send", "await"] * 3
    assert [command.result_ref for command in stub.sent_commands] == [
        None,
        "spec_creation-result",
        "task_planning-result",
    ]
    assert stub.sent_commands[1].prompt == "/create-tasks --from spec_creation-result"

    entries = read_checkpoints(checkpoint_path)
    assert [entry.stage for entry in entries] == [
        Stage.SPEC_CREATION,
        Stage.TASK_PLANNING,
        Stage.TASK_EXECUTION,
    ]
    assert {entry.run_id for entry in entries} == {summary.run_id}


def test_failure_at_planning_aborts_before_execution(
    recorder: OutcomeRecorder,
    checkpoint_path: Path,
) -> None:
    stub = StubAgentSession(statuses={Stage.TASK_PLANNING: StageStatus.FAILED})

    with pytest.raises(WorkflowAbortedError) as excinfo:
        _sequencer(stub, recorder).run(SPEC, RunConfig())

    error = excinfo.value
    assert error.stage == Stage.TASK_PLANNING
    assert error.summary.status == RunStatus.ABORTED
    assert error.summary.failed_outcome is not None
    assert error.summary.failed_outcome.failure_class == FailureClass.AGENT_FAILURE
    assert Stage.TASK_EXECUTION not in {call.stage for call in stub.calls}

    entries = read_checkpoints(checkpoint_path)
    assert [(entry.stage, entry.status) for entry in entries] == [
        (Stage.SPEC_CREATION, StageStatus.SUCCEEDED),
        (Stage.TASK_PLANNING, StageStatus.FAILED),
    ]


def test_failure_at_spec_creation_never_attempts_planning(
    recorder: OutcomeRecorder,
    checkpoint_path: Path,
) -> None:
    stub = StubAgentSession(
        statuses={Stage.SPEC_CREATION: StageStatus.FAILED},
        error_details={Stage.SPEC_CREATION: "spec rejected"},
    )

    with pytest.raises(WorkflowAbortedError, match="spec rejected"):
        _sequencer(stub, recorder).run(SPEC, RunConfig())

    assert {call.stage for call in stub.calls} == {Stage.SPEC_CREATION}
    assert len(read_checkpoints(checkpoint_path)) == 1


def test_requested_conversation_is_reused_for_every_stage(recorder: OutcomeRecorder) -> None:
    stub = StubAgentSession()

    summary = _sequencer(stub, recorder).run(SPEC, RunConfig(conversation_id="abc123"))

    assert summary.conversation_id == "abc123"
    assert [command.conversation_id for command in stub.sent_commands] == ["abc123"] * 3


def test_conversation_established_by_agent_is_kept(recorder: OutcomeRecorder) -> None:
    stub = StubAgentSession(conversation_id="agent-conv-7")

    summary = _sequencer(stub, recorder).run(SPEC, RunConfig())

    assert summary.conversation_id == "agent-conv-7"
    assert [command.conversation_id for command in stub.sent_commands] == [
        None,
        "agent-conv-7",
        "agent-conv-7",
    ]


def test_conversation_switch_mid_run_fails_the_stage(
    recorder: OutcomeRecorder,
    checkpoint_path: Path,
) -> None:
    with pytest.raises(WorkflowAbortedError) as excinfo:
        _sequencer(_ConversationSwitchSession(), recorder).run(SPEC, RunConfig())

    failed = excinfo.value.summary.failed_outcome
    assert failed is not None
    assert failed.stage == Stage.TASK_PLANNING
    assert failed.failure_class == FailureClass.PROTOCOL_VIOLATION
    assert excinfo.value.summary.conversation_id == "conv-1"
    assert read_checkpoints(checkpoint_path)[-1].summary.startswith("protocol_violation:")


def test_exhausted_communication_on_send_fails_the_stage(recorder: OutcomeRecorder) -> None:
    session = _SendFailsSession()

    with pytest.raises(WorkflowAbortedError) as excinfo:
        _sequencer(session, recorder).run(SPEC, RunConfig())

    failed = excinfo.value.summary.failed_outcome
    assert failed is not None
    assert failed.stage == Stage.SPEC_CREATION
    assert failed.failure_class == FailureClass.COMMUNICATION
    assert len(session.sent) == 1


def test_cancellation_skips_remaining_stages(
    recorder: OutcomeRecorder,
    checkpoint_path: Path,
) -> None:
    stub = StubAgentSession()

    with pytest.raises(WorkflowAbortedError) as excinfo:
        _sequencer(
            stub,
            recorder,
            cancel_requested=lambda: stub.network_calls >= 2,
        ).run(SPEC, RunConfig())

    error = excinfo.value
    assert error.stage == Stage.TASK_PLANNING
    assert error.error_detail == CANCELED_DETAIL
    assert [outcome.status for outcome in error.summary.stage_outcomes] == [
        StageStatus.SUCCEEDED,
        StageStatus.SKIPPED,
        StageStatus.SKIPPED,
    ]
    assert error.summary.stage_outcomes[-1].failure_class == FailureClass.CANCELED
    assert stub.network_calls == 2
    assert len(read_checkpoints(checkpoint_path)) == 3


def test_each_run_gets_a_fresh_run_id(recorder: OutcomeRecorder) -> None:
    sequencer = _sequencer(StubAgentSession(), recorder)

    first = sequencer.run(SPEC, RunConfig())
    second = sequencer.run(SPEC, RunConfig())

    assert first.run_id != second.run_id
    assert first.stage_outcomes is not second.stage_outcomes


@pytest.mark.parametrize("spec_text", [None, "", "   \n"])
def test_empty_spec_is_rejected_before_any_stage(
    recorder: OutcomeRecorder,
    checkpoint_path: Path,
    spec_text: str | None,
) -> None:
    stub = StubAgentSession()

    with pytest.raises(ArgumentError, match="Spec text is required"):
        _sequencer(stub, recorder).run(spec_text, RunConfig())

    assert stub.network_calls == 0
    assert not checkpoint_path.exists()


def test_after_stage_hook_runs_after_each_success(recorder: OutcomeRecorder) -> None:
    seen: list[Stage] = []
    stub = StubAgentSession()

    def _hook(stage: Stage, outcome: StageOutcome) -> None:
        assert outcome.succeeded
        seen.append(stage)
        assert stub.network_calls == 2 * len(seen)

    _sequencer(stub, recorder, after_stage=_hook).run(SPEC, RunConfig())

    assert seen == [Stage.SPEC_CREATION, Stage.TASK_PLANNING, Stage.TASK_EXECUTION]


def test_checkpoint_write_failure_does_not_abort_run(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("file", encoding="utf-8")
    stub = StubAgentSession()

    with OutcomeRecorder(checkpoint_log=CheckpointLog(blocker / "checkpoints.log")) as recorder:
        summary = _sequencer(stub, recorder).run(SPEC, RunConfig())

    assert summary.status == RunStatus.COMPLETED
    assert len(summary.logging_errors) == 3
    assert stub.network_calls == 6


@pytest.mark.parametrize(
    "config",
    [
        RunConfig(stage_timeout_seconds=float("nan")),
        RunConfig(stage_timeout_seconds=float("inf")),
        RunConfig(poll_interval_seconds=float("nan")),
    ],
)
def test_non_finite_supervision_settings_are_rejected(
    recorder: OutcomeRecorder,
    config: RunConfig,
) -> None:
    stub = StubAgentSession()

    with pytest.raises(ArgumentError, match="finite number > 0"):
        _sequencer(stub, recorder).run(SPEC, config)

    assert stub.network_calls == 0


def test_spec_creation_without_conversation_id_fails(
    recorder: OutcomeRecorder,
    checkpoint_path: Path,
) -> None:
    stub = StubAgentSession(conversation_id="")

    with pytest.raises(WorkflowAbortedError) as excinfo:
        _sequencer(stub, recorder).run(SPEC, RunConfig())

    failed = excinfo.value.summary.failed_outcome
    assert failed is not None
    assert failed.stage == Stage.SPEC_CREATION
    assert failed.failure_class == FailureClass.PROTOCOL_VIOLATION
    assert {call.stage for call in stub.calls} == {Stage.SPEC_CREATION}
    assert len(read_checkpoints(checkpoint_path)) == 1


def test_before_stage_hook_sees_command_before_it_is_sent(recorder: OutcomeRecorder) -> None:
    stub = StubAgentSession(conversation_id="conv-9")
    seen: list[tuple[Stage, str, str | None, int]] = []

    def _hook(stage: Stage, command: AgentCommand) -> None:
        seen.append((stage, command.prompt, command.conversation_id, stub.network_calls))

    _sequencer(stub, recorder, before_stage=_hook).run(SPEC, RunConfig())

    assert seen == [
        (Stage.SPEC_CREATION, '/create-spec "Add audit log table"', None, 0),
        (Stage.TASK_PLANNING, "/create-tasks --from spec_creation-result", "conv-9", 2),
        (Stage.TASK_EXECUTION, "/execute-tasks --from task_planning-result", "conv-9", 4),
    ]


def test_before_stage_hook_is_not_called_in_dry_run(recorder: OutcomeRecorder) -> None:
    seen: list[Stage] = []

    _sequencer(None, recorder, before_stage=lambda stage, _: seen.append(stage)).run(
        SPEC,
        RunConfig(mode=RunMode.DRY_RUN),
    )

    assert seen == []
