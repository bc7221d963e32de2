"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from eos_driver.driver.recorder import CheckpointLog, OutcomeRecorder, TraceFile

_DRIVER_ENV_VARS = (
    "AGENT_API_TOKEN",
    "AGENT_API_BASE_URL",
    "CHECKPOINT_PATH",
    "DRIVER_POLL_INTERVAL_SECONDS",
    "DRIVER_STAGE_TIMEOUT_SECONDS",
    "DRIVER_MAX_ATTEMPTS",
    "DRIVER_RETRY_BASE_SECONDS",
    "DRIVER_RETRY_MAX_SECONDS",
    "DRIVER_REQUEST_TIMEOUT_SECONDS",
    "DRIVER_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch) -> None:
    """Keep tests away from the caller's agent credentials and cwd."""

    for name in _DRIVER_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def agent_env(monkeypatch) -> None:
    """Provide agent credentials so automated runs pass validation."""

    monkeypatch.setenv("AGENT_API_TOKEN", "test-token-123456")
    monkeypatch.setenv("AGENT_API_BASE_URL", "http://agent.test")


@pytest.fixture()
def checkpoint_path(tmp_path: Path) -> Path:
    return tmp_path / "audit" / "checkpoints.log"


@pytest.fixture()
def recorder(checkpoint_path: Path, tmp_path: Path):
    with OutcomeRecorder(
        checkpoint_log=CheckpointLog(checkpoint_path),
        trace_file=TraceFile(tmp_path / "trace.jsonl"),
    ) as outcome_recorder:
        yield outcome_recorder
