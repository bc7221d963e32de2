"""Error taxonomy for the stage driver."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from eos_driver.driver.models import FinalSummary, Stage


class DriverError(RuntimeError):
    """Base class for driver errors."""


class ArgumentError(DriverError, ValueError):
    """Invalid invocation input; raised before any stage starts."""


class CommunicationError(DriverError):
    """Agent API could not be reached, with retryability hint."""

    def __init__(self, message: str, *, transient: bool = True, attempts: int = 1) -> None:
        super().__init__(message)
        self.transient = transient
        self.attempts = attempts


class AgentFailure(DriverError):
    """Agent rejected a command or reported the stage as failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProtocolViolation(AgentFailure):
    """Agent response broke a run invariant (e.g. conversation switch)."""


class LoggingError(DriverError):
    """Checkpoint or trace write failed; never aborts the run."""


class WorkflowAbortedError(DriverError):
    """Run finalized as aborted; carries the failing stage and summary."""

    def __init__(self, *, stage: Stage, error_detail: str, summary: FinalSummary) -> None:
        super().__init__(f"Stage {stage.value} failed: {error_detail}")
        self.stage = stage
        self.error_detail = error_detail
        self.summary = summary
