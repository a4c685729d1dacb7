"""Time helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def days_from(start: datetime, days: int | float | None) -> datetime | None:
    """Return ``start`` shifted by ``days``, or None when no duration applies."""
    if days is None:
        return None
    return start + timedelta(days=days)
