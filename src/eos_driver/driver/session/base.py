"""Session interface between the sequencer and the automation agent."""

from __future__ import annotations

from typing import Protocol

from eos_driver.driver.models import AgentCommand, StageOutcome, SubmissionHandle


class AgentSession(Protocol):
    """Protocol implemented by agent sessions."""

    def send(self, command: AgentCommand) -> SubmissionHandle:
        """Submit a command; raise ``CommunicationError`` or ``AgentFailure``."""

    def await_completion(
        self,
        handle: SubmissionHandle,
        *,
        poll_interval: float,
        timeout: float,
    ) -> StageOutcome:
        """Block until the submission is terminal or ``timeout`` elapses."""
