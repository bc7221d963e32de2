"""UTC timestamps as written to and read back from checkpoint files."""

from __future__ import annotations

from datetime import UTC, datetime


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def to_iso(value: datetime | None) -> str | None:
    """ISO-8601 text in UTC; naive values are taken to be UTC already."""

    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


def from_iso(value: str) -> datetime:
    """Inverse of :func:`to_iso`; rejects blank input with ``ValueError``."""

    text = value.strip()
    if not text:
        raise ValueError("Empty timestamp")
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
