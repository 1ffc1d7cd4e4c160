"""Clock adapter: the single source of "now" and of the civil date derived from it."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"


class Clock(Protocol):
    """Anything that can report the current instant. Inject a fake in tests."""

    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


def load_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def civil_date(instant: datetime, tz: ZoneInfo) -> date:
    """Calendar date of ``instant`` as observed in ``tz``.

    Goes through a full zoned conversion so zones with DST transitions resolve
    to the right day.
    """
    if instant.tzinfo is None or instant.utcoffset() is None:
        raise ValueError("civil_date requires a timezone-aware instant")
    return instant.astimezone(tz).date()


def as_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; everything is stored as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def parse_date(value: date | str) -> date:
    if isinstance(value, datetime):
        raise ValidationError("Expected a calendar date, not a timestamp.")
    if isinstance(value, date):
        return value
    try:
        parsed = datetime.strptime(value, DATE_FORMAT).date()
    except (TypeError, ValueError) as exc:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD.") from exc
    # strptime tolerates unpadded fields such as 2025-1-5.
    if format_date(parsed) != value:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD.")
    return parsed
