"""Scripted in-process agent session for tests and local rehearsal."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

from eos_driver.driver.models import (
    AgentCommand,
    FailureClass,
    Stage,
    StageOutcome,
    StageStatus,
    SubmissionHandle,
)
from eos_driver.time_utils import utc_now

DEFAULT_STUB_CONVERSATION_ID = "stub-conversation"


@dataclass(slots=True)
class StubCall:
    """One recorded interaction with the stub."""

    kind: str
    stage: Stage
    command: AgentCommand | None = None
    poll_interval: float | None = None
    timeout: float | None = None


@dataclass(slots=True)
class StubAgentSession:
    """Returns a scripted terminal status per stage.

    Stages missing from ``statuses`` succeed. Every call is recorded in
    ``calls`` so tests can assert on ordering and on the absence of calls.
    """

    statuses: Mapping[Stage, StageStatus] = field(default_factory=dict)
    error_details: Mapping[Stage, str] = field(default_factory=dict)
    conversation_id: str = DEFAULT_STUB_CONVERSATION_ID
    calls: list[StubCall] = field(default_factory=list)
    _counter: int = 0

    @property
    def sent_commands(self) -> list[AgentCommand]:
        return [call.command for call in self.calls if call.command is not None]

    @property
    def network_calls(self) -> int:
        return len(self.calls)

    def send(self, command: AgentCommand) -> SubmissionHandle:
        self._counter += 1
        self.calls.append(StubCall(kind="send", stage=command.stage, command=command))
        return SubmissionHandle(
            submission_id=f"stub-{self._counter}",
            stage=command.stage,
            sent_at=utc_now(),
            conversation_id=command.conversation_id or self.conversation_id,
        )

    def await_completion(
        self,
        handle: SubmissionHandle,
        *,
        poll_interval: float,
        timeout: float,
    ) -> StageOutcome:
        self.calls.append(
            StubCall(
                kind="await",
                stage=handle.stage,
                poll_interval=poll_interval,
                timeout=timeout,
            ),
        )
        status = self.statuses.get(handle.stage, StageStatus.SUCCEEDED)
        if status == StageStatus.SUCCEEDED:
            return StageOutcome(
                stage=handle.stage,
                status=status,
                sent_at=handle.sent_at,
                completed_at=utc_now(),
                raw_response={"status": "succeeded", "submission_id": handle.submission_id},
                result_id=f"{handle.stage.value}-result",
                conversation_id=handle.conversation_id,
            )
        detail = self.error_details.get(
            handle.stage,
            f"/{handle.stage.command_name} reported an error: scripted failure",
        )
        return StageOutcome(
            stage=handle.stage,
            status=StageStatus.FAILED,
            sent_at=handle.sent_at,
            completed_at=utc_now(),
            raw_response={"status": "failed", "submission_id": handle.submission_id},
            error_detail=detail,
            failure_class=FailureClass.AGENT_FAILURE,
            conversation_id=handle.conversation_id,
        )
