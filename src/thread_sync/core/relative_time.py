"""Human-readable relative timestamps."""

from datetime import UTC, datetime

INVALID_DATE = "Invalid date"


def _coerce(value: datetime | str) -> datetime | None:
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except (AttributeError, ValueError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _elapsed(dt: datetime, now: datetime | None) -> float:
    # Clock skew can put server timestamps slightly in the future.
    reference = _coerce(now) if now is not None else None
    return max(0.0, ((reference or datetime.now(UTC)) - dt).total_seconds())


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'} ago"


def format_relative_time(value: datetime | str, *, now: datetime | None = None) -> str:
    """Format a timestamp as "5 minutes ago", "Yesterday", "3 weeks ago" and so on.

    Months are 30 days and years 365 days. Returns ``"Invalid date"`` for
    input that cannot be parsed.
    """
    dt = _coerce(value)
    if dt is None:
        return INVALID_DATE
    seconds = _elapsed(dt, now)
    minutes = int(seconds // 60)
    hours = int(seconds // 3600)
    days = int(seconds // 86400)

    if days == 0:
        if minutes < 1:
            return "Just now"
        if minutes < 60:
            return _plural(minutes, "minute")
        return _plural(hours, "hour")
    if days == 1:
        return "Yesterday"
    if days < 7:
        return _plural(days, "day")
    if days // 7 < 4:
        return _plural(days // 7, "week")
    if days // 30 < 12:
        return _plural(days // 30, "month")
    return _plural(days // 365, "year")


def format_compact_age(value: datetime | str, *, now: datetime | None = None) -> str:
    """Short age label shown next to reply authors: "now", "12m", "3h", "4d"."""
    dt = _coerce(value)
    if dt is None:
        return INVALID_DATE
    seconds = _elapsed(dt, now)
    days = int(seconds // 86400)
    if days == 0:
        hours = int(seconds // 3600)
        if hours == 0:
            minutes = int(seconds // 60)
            return "now" if minutes < 1 else f"{minutes}m"
        return f"{hours}h"
    return f"{days}d"
