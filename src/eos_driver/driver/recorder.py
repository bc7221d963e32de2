"""Append-only checkpoint log and JSONL trace for stage outcomes."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from eos_driver.driver.errors import LoggingError
from eos_driver.driver.models import CheckpointEntry, Stage, StageOutcome, StageStatus
from eos_driver.driver.sanitization import sanitize_summary
from eos_driver.time_utils import from_iso, to_iso

logger = logging.getLogger(__name__)

CHECKPOINT_FIELD_SEPARATOR = "\t"
_CHECKPOINT_FIELDS = 5


class AppendOnlyFile:
    """File handle that only ever appends whole lines.

    Every line goes out in a single ``write`` on an ``O_APPEND`` descriptor
    and is fsynced before returning, so concurrent writers never interleave
    within a line and an acknowledged line survives a crash.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._fd: int | None = None

    def append_line(self, line: str) -> None:
        if "\n" in line:
            raise LoggingError(f"Refusing to append multi-line record to {self.path}")
        data = f"{line}\n".encode()
        try:
            fd = self._ensure_open()
            written = os.write(fd, data)
            if written != len(data):
                raise LoggingError(
                    f"Short write to {self.path}: {written} of {len(data)} bytes",
                )
            os.fsync(fd)
        except OSError as error:
            raise LoggingError(f"Failed to append to {self.path}: {error}") from error

    def close(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        os.close(fd)

    def _ensure_open(self) -> int:
        if self._fd is None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        return self._fd

    def __enter__(self) -> AppendOnlyFile:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


class CheckpointLog(AppendOnlyFile):
    """Human-readable, tab-delimited checkpoint log."""

    def append_entry(self, entry: CheckpointEntry) -> None:
        self.append_line(format_checkpoint_line(entry))


class TraceFile(AppendOnlyFile):
    """Newline-delimited JSON trace of stage outcomes."""

    def append_record(self, record: dict[str, object]) -> None:
        self.append_line(json.dumps(record, ensure_ascii=False, sort_keys=True))


class OutcomeRecorder:
    """Writes stage outcomes to the checkpoint log and optional trace.

    Write failures are logged and collected in ``errors``; they never
    propagate to the caller.
    """

    def __init__(self, *, checkpoint_log: CheckpointLog, trace_file: TraceFile | None = None) -> None:
        self.checkpoint_log = checkpoint_log
        self.trace_file = trace_file
        self.errors: list[str] = []

    def append(self, entry: CheckpointEntry, outcome: StageOutcome | None = None) -> None:
        try:
            self.checkpoint_log.append_entry(entry)
        except LoggingError as error:
            self._warn(error)

        if self.trace_file is None or outcome is None:
            return
        try:
            self.trace_file.append_record(outcome.to_trace_record(run_id=entry.run_id))
        except LoggingError as error:
            self._warn(error)

    def close(self) -> None:
        for handle in (self.checkpoint_log, self.trace_file):
            if handle is None:
                continue
            try:
                handle.close()
            except OSError as error:
                self._warn(LoggingError(f"Failed to close {handle.path}: {error}"))

    def _warn(self, error: LoggingError) -> None:
        logger.warning("%s", error)
        self.errors.append(str(error))

    def __enter__(self) -> OutcomeRecorder:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def format_checkpoint_line(entry: CheckpointEntry) -> str:
    summary = sanitize_summary(entry.summary) or "-"
    return CHECKPOINT_FIELD_SEPARATOR.join(
        (
            to_iso(entry.timestamp) or "-",
            entry.run_id,
            entry.stage.value,
            entry.status.value,
            summary,
        ),
    )


def parse_checkpoint_line(line: str) -> CheckpointEntry:
    parts = line.rstrip("\n").split(CHECKPOINT_FIELD_SEPARATOR, _CHECKPOINT_FIELDS - 1)
    if len(parts) != _CHECKPOINT_FIELDS:
        raise ValueError(f"Malformed checkpoint line: {line!r}")
    timestamp, run_id, stage, status, summary = parts
    return CheckpointEntry(
        run_id=run_id,
        stage=Stage(stage),
        status=StageStatus(status),
        timestamp=from_iso(timestamp),
        summary=summary,
    )


def read_checkpoints(path: Path, *, run_id: str | None = None) -> list[CheckpointEntry]:
    """Parse the checkpoint log, optionally for one run only.

    Records are split on newline bytes only. A torn line (crash mid-write, possibly
    inside a multi-byte character) is skipped with a warning. Read failures
    raise ``LoggingError``.
    """

    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return []
    except OSError as error:
        raise LoggingError(f"Failed to read {path}: {error}") from error

    entries: list[CheckpointEntry] = []
    for line_no, raw in enumerate(data.split(b"\n"), start=1):
        if not raw.strip():
            continue
        try:
            entry = parse_checkpoint_line(raw.decode("utf-8"))
        except ValueError:
            logger.warning("Skipping malformed checkpoint line %d in %s", line_no, path)
            continue
        if run_id is not None and entry.run_id != run_id:
            continue
        entries.append(entry)
    return entries
