"""Time Utilities - UTC timestamps and SLA arithmetic"""
from datetime import datetime, timezone, timedelta
from typing import Optional, Union
from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Get current UTC datetime"""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones to UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_iso(dt: datetime) -> str:
    """
    Format datetime to ISO 8601 string

    Args:
        dt: Datetime object

    Returns:
        ISO formatted string with Z suffix for UTC
    """
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 string to datetime

    Args:
        iso_string: ISO formatted datetime string

    Returns:
        Datetime object in UTC
    """
    return ensure_utc(date_parser.isoparse(iso_string))


def coerce_datetime(value: Union[datetime, str, None]) -> datetime:
    """Accept a datetime, an ISO string or None (meaning now)"""
    if value is None:
        return utc_now()
    if isinstance(value, str):
        return parse_iso(value)
    return ensure_utc(value)


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed hours from start to end (negative if end is earlier)"""
    delta = ensure_utc(end) - ensure_utc(start)
    return delta.total_seconds() / 3600


def calculate_due_at(start_time: datetime, sla_hours: float) -> datetime:
    """
    Calculate due datetime from start time and SLA budget

    Args:
        start_time: When the step was entered
        sla_hours: Hours allowed for the step

    Returns:
        Due datetime
    """
    return ensure_utc(start_time) + timedelta(hours=sla_hours)


def is_overdue(due_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """
    Check if due datetime has passed

    Args:
        due_at: Due datetime or None
        now: Reference time, defaults to current UTC time

    Returns:
        True if overdue, False otherwise
    """
    if due_at is None:
        return False
    reference = ensure_utc(now) if now else utc_now()
    return reference > ensure_utc(due_at)


def format_duration(minutes: int) -> str:
    """
    Format duration in minutes to human readable string

    Args:
        minutes: Duration in minutes

    Returns:
        Human readable string (e.g., "2h 30m", "1d 4h")
    """
    if minutes < 0:
        return f"-{format_duration(-minutes)}"

    if minutes < 60:
        return f"{minutes}m"

    hours = minutes // 60
    remaining_minutes = minutes % 60

    if hours < 24:
        if remaining_minutes > 0:
            return f"{hours}h {remaining_minutes}m"
        return f"{hours}h"

    days = hours // 24
    remaining_hours = hours % 24

    if remaining_hours > 0:
        return f"{days}d {remaining_hours}h"
    return f"{days}d"
