"""Agent session implementations."""

from eos_driver.driver.session.base import AgentSession
from eos_driver.driver.session.http_session import HttpAgentSession
from eos_driver.driver.session.stub import StubAgentSession

__all__ = [
    "AgentSession",
    "HttpAgentSession",
    "StubAgentSession",
]
