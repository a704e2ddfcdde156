"""Tests for time utilities"""
from datetime import datetime, timedelta, timezone

from approval_engine.utils.time import (
    calculate_due_at, coerce_datetime, ensure_utc, format_duration, format_iso,
    hours_between, is_overdue, parse_iso
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def test_ensure_utc_attaches_timezone_to_naive():
    assert ensure_utc(datetime(2026, 3, 2, 9, 0)) == T0


def test_iso_round_trip():
    assert format_iso(T0) == "2026-03-02T09:00:00Z"
    assert parse_iso("2026-03-02T11:00:00+02:00") == T0


def test_coerce_datetime():
    assert coerce_datetime("2026-03-02T09:00:00Z") == T0
    assert coerce_datetime(T0) == T0
    assert coerce_datetime(None).tzinfo is not None


def test_sla_arithmetic():
    due = calculate_due_at(T0, 24)
    assert due == T0 + timedelta(hours=24)
    assert is_overdue(due, T0 + timedelta(hours=23)) is False
    assert is_overdue(due, due) is False
    assert is_overdue(due, due + timedelta(seconds=1)) is True
    assert is_overdue(None) is False


def test_hours_between():
    assert hours_between(T0, T0 + timedelta(minutes=90)) == 1.5


def test_format_duration():
    assert format_duration(45) == "45m"
    assert format_duration(150) == "2h 30m"
    assert format_duration(60 * 28) == "1d 4h"
