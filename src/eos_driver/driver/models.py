"""Domain models for stage sequencing and outcome recording."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from eos_driver.driver.errors import ProtocolViolation
from eos_driver.time_utils import to_iso


class Stage(str, Enum):
    """Fixed, ordered workflow stages."""

    SPEC_CREATION = "spec_creation"
    TASK_PLANNING = "task_planning"
    TASK_EXECUTION = "task_execution"

    @property
    def command_name(self) -> str:
        """Agent slash command that drives this stage."""

        return _COMMAND_NAMES[self]

    @property
    def index(self) -> int:
        return STAGE_ORDER.index(self)

    def previous(self) -> Stage | None:
        if self.index == 0:
            return None
        return STAGE_ORDER[self.index - 1]


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.SPEC_CREATION,
    Stage.TASK_PLANNING,
    Stage.TASK_EXECUTION,
)

_COMMAND_NAMES: dict[Stage, str] = {
    Stage.SPEC_CREATION: "create-spec",
    Stage.TASK_PLANNING: "create-tasks",
    Stage.TASK_EXECUTION: "execute-tasks",
}


class RunMode(str, Enum):
    """How a run talks to the agent."""

    AUTOMATED = "automated"
    DRY_RUN = "dry_run"


class StageStatus(str, Enum):
    """Terminal status of one stage."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class RunStatus(str, Enum):
    """Terminal status of one workflow run."""

    COMPLETED = "completed"
    ABORTED = "aborted"


class FailureClass(str, Enum):
    """Normalized reasons a stage can fail."""

    AGENT_FAILURE = "agent_failure"
    TIMEOUT = "timeout"
    COMMUNICATION = "communication"
    CANCELED = "canceled"
    PROTOCOL_VIOLATION = "protocol_violation"


@dataclass(slots=True)
class RunConfig:
    """Per-invocation knobs passed to the sequencer."""

    conversation_id: str | None = None
    mode: RunMode = RunMode.AUTOMATED
    poll_interval_seconds: float = 5.0
    stage_timeout_seconds: float = 1_800.0


@dataclass(slots=True)
class WorkflowRun:
    """One driver invocation, owned by the sequencer while it runs."""

    run_id: str
    spec_text: str
    mode: RunMode
    created_at: datetime
    conversation_id: str | None = None
    _conversation_locked: bool = field(default=False, repr=False)

    @property
    def dry_run(self) -> bool:
        return self.mode == RunMode.DRY_RUN

    def establish_conversation(self, conversation_id: str | None) -> None:
        """Pin the conversation id; later stages may only confirm it.

        The first succeeded stage (spec creation) must yield an id.
        """

        if not conversation_id:
            if self._conversation_locked:
                return
            raise ProtocolViolation("Agent did not report a conversation id for the run.")
        if self._conversation_locked:
            if conversation_id != self.conversation_id:
                raise ProtocolViolation(
                    "Agent switched conversation mid-run: "
                    f"{self.conversation_id!r} -> {conversation_id!r}",
                )
            return
        if self.conversation_id is not None and conversation_id != self.conversation_id:
            raise ProtocolViolation(
                "Agent did not resume requested conversation "
                f"{self.conversation_id!r} (got {conversation_id!r})",
            )
        self.conversation_id = conversation_id
        self._conversation_locked = True


@dataclass(slots=True, frozen=True)
class AgentCommand:
    """Outbound command for one stage."""

    stage: Stage
    prompt: str
    result_ref: str | None = None
    conversation_id: str | None = None

    def to_payload(self) -> bytes:
        """Canonical JSON encoding; identical commands encode identically."""

        return json.dumps(
            {
                "conversation_id": self.conversation_id,
                "prompt": self.prompt,
                "result_ref": self.result_ref,
                "stage": self.stage.value,
            },
            ensure_ascii=False,
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")


@dataclass(slots=True, frozen=True)
class SubmissionHandle:
    """Agent-side identity of one submitted command."""

    submission_id: str
    stage: Stage
    sent_at: datetime
    conversation_id: str | None = None


@dataclass(slots=True)
class StageOutcome:
    """Result of supervising one stage."""

    stage: Stage
    status: StageStatus
    sent_at: datetime | None
    completed_at: datetime | None
    raw_response: dict[str, Any] = field(default_factory=dict)
    error_detail: str | None = None
    failure_class: FailureClass | None = None
    result_id: str | None = None
    conversation_id: str | None = None
    command: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCEEDED

    def to_trace_record(self, *, run_id: str) -> dict[str, Any]:
        """Serialize the fields consumed by external trace tooling."""

        return {
            "run_id": run_id,
            "stage": self.stage.value,
            "status": self.status.value,
            "sent_at": to_iso(self.sent_at),
            "completed_at": to_iso(self.completed_at),
            "error_detail": self.error_detail,
        }


@dataclass(slots=True, frozen=True)
class CheckpointEntry:
    """One persisted, never-mutated checkpoint line."""

    run_id: str
    stage: Stage
    status: StageStatus
    timestamp: datetime
    summary: str


@dataclass(slots=True)
class FinalSummary:
    """What a run reports back to its caller."""

    run_id: str
    status: RunStatus
    stage_outcomes: list[StageOutcome]
    conversation_id: str | None = None
    logging_errors: list[str] = field(default_factory=list)

    @property
    def failed_outcome(self) -> StageOutcome | None:
        for outcome in self.stage_outcomes:
            if outcome.status == StageStatus.FAILED:
                return outcome
        return None
