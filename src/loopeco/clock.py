"""UTC time helpers shared by the economy and progression services."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes read back from stores without tz support."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def day_of(now: datetime | None = None) -> date:
    """UTC calendar day for ``now``."""
    if now is None:
        now = utcnow()
    return as_utc(now).date()


def next_midnight(now: datetime | None = None) -> datetime:
    """Start of the UTC day after ``now``."""
    return datetime.combine(day_of(now) + timedelta(days=1), time.min, tzinfo=timezone.utc)


def get_week_iso(dt: datetime) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return dt.strftime("%G-W%V")


def next_week_start(now: datetime | None = None) -> datetime:
    """Monday 00:00 UTC of the ISO week after ``now``."""
    today = day_of(now)
    monday = today - timedelta(days=today.weekday())
    return datetime.combine(monday + timedelta(weeks=1), time.min, tzinfo=timezone.utc)
