"""Runtime configuration for the workflow driver."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

DEFAULT_CHECKPOINT_PATH = Path(".eos/checkpoints.log")


@dataclass(slots=True)
class AgentSettings:
    """Agent API endpoint and communication policy."""

    base_url: str = ""
    api_token: str = field(default="", repr=False)
    request_timeout_seconds: float = 30.0
    max_attempts: int = 5
    retry_base_seconds: float = 1.0
    retry_max_seconds: float = 30.0


@dataclass(slots=True)
class StageSettings:
    """Per-stage supervision settings."""

    poll_interval_seconds: float = 5.0
    timeout_seconds: float = 1_800.0


@dataclass(slots=True)
class Settings:
    """Driver settings grouped by concern."""

    checkpoint_path: Path = DEFAULT_CHECKPOINT_PATH
    agent: AgentSettings = field(default_factory=AgentSettings)
    stage: StageSettings = field(default_factory=StageSettings)

    @classmethod
    def from_env(cls, checkpoint_path: Path | None = None) -> Settings:
        """Load settings from environment with defaults for local use."""

        return cls(
            checkpoint_path=checkpoint_path
            or Path(os.getenv("CHECKPOINT_PATH", str(DEFAULT_CHECKPOINT_PATH))),
            agent=AgentSettings(
                base_url=os.getenv("AGENT_API_BASE_URL", "").strip(),
                api_token=os.getenv("AGENT_API_TOKEN", "").strip(),
                request_timeout_seconds=_env_float("DRIVER_REQUEST_TIMEOUT_SECONDS", 30.0),
                max_attempts=_env_int("DRIVER_MAX_ATTEMPTS", 5),
                retry_base_seconds=_env_float("DRIVER_RETRY_BASE_SECONDS", 1.0),
                retry_max_seconds=_env_float("DRIVER_RETRY_MAX_SECONDS", 30.0),
            ),
            stage=StageSettings(
                poll_interval_seconds=_env_float("DRIVER_POLL_INTERVAL_SECONDS", 5.0),
                timeout_seconds=_env_float("DRIVER_STAGE_TIMEOUT_SECONDS", 1_800.0),
            ),
        )

    def validate_for_run(self, *, dry_run: bool) -> None:
        """Raise configuration error if a run cannot start with these settings."""

        if not _positive_finite(self.stage.poll_interval_seconds):
            raise ValueError("DRIVER_POLL_INTERVAL_SECONDS must be a finite number > 0.")
        if not _positive_finite(self.stage.timeout_seconds):
            raise ValueError("DRIVER_STAGE_TIMEOUT_SECONDS must be a finite number > 0.")
        if dry_run:
            return

        if self.agent.max_attempts < 1:
            raise ValueError("DRIVER_MAX_ATTEMPTS must be >= 1.")
        if not _positive_finite(self.agent.request_timeout_seconds):
            raise ValueError("DRIVER_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if not (self.agent.retry_base_seconds >= 0 and self.agent.retry_max_seconds >= 0):
            raise ValueError("Retry backoff settings must be >= 0.")
        if not self.agent.api_token:
            raise ValueError("AGENT_API_TOKEN is required unless --dry-run is set.")
        if not self.agent.base_url:
            raise ValueError("AGENT_API_BASE_URL is required unless --dry-run is set.")
        _validate_base_url(self.agent.base_url)


def _validate_base_url(value: str) -> None:
    parsed = urlparse(value)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(
            "Invalid AGENT_API_BASE_URL: "
            f"{value!r}. Expected an absolute URL with http:// or https:// scheme.",
        )


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        parsed = float(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {value!r}") from error
    if not math.isfinite(parsed):
        raise ValueError(f"{name} must be finite, got {value!r}")
    return parsed


def _positive_finite(value: float) -> bool:
    return math.isfinite(value) and value > 0
