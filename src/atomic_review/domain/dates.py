"""Date helpers for due/overdue predicates and interval display.

Stored timestamps are UTC. "Today" is always the local calendar day.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_today(now: datetime | None = None) -> datetime:
    """Local midnight of the day containing `now`."""
    local = (now or utcnow()).astimezone()
    return local.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_today(now: datetime | None = None) -> datetime:
    """Last representable instant of the local day containing `now`."""
    return start_of_today(now) + timedelta(days=1) - timedelta(microseconds=1)


def is_due(due: datetime, now: datetime | None = None) -> bool:
    return due <= end_of_today(now)


def is_overdue(due: datetime, now: datetime | None = None) -> bool:
    return due < start_of_today(now)


def days_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 86400.0


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit}" if value == 1 else f"{value} {unit}s"


def format_interval(days: float) -> str:
    """Render an interval in days, e.g. '10 minutes', '3 days', '2 months'."""
    if days < 1:
        hours = days * 24
        if hours < 1:
            return _plural(round(hours * 60), "minute")
        return _plural(round(hours), "hour")
    if days < 30:
        return _plural(round(days), "day")
    if days < 365:
        return _plural(round(days / 30), "month")
    return _plural(round(days / 365), "year")
