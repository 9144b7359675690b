"""
Pure schedule arithmetic for recurring templates.

Contract:
    Every function here is PURE -- no I/O, no clock reads.  Timestamps come
    from the caller's injected Clock.

Key shapes:
    scheduled   {template_id}-{YYYY-MM}
    manual      {template_id}-{YYYY-MM}-manual-{epoch_ms}

The period is the calendar month of the tick's ``now``, not of
``next_run_date``.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from billing_kernel.exceptions import DayOfMonthOutOfRangeError

MIN_DAY_OF_MONTH = 1
MAX_DAY_OF_MONTH = 28


def validate_day_of_month(day_of_month: int) -> int:
    """Raise DayOfMonthOutOfRangeError unless 1 <= day <= 28."""
    if (
        isinstance(day_of_month, bool)
        or not isinstance(day_of_month, int)
        or not MIN_DAY_OF_MONTH <= day_of_month <= MAX_DAY_OF_MONTH
    ):
        raise DayOfMonthOutOfRangeError(day_of_month)
    return day_of_month


def period_key(moment: date | datetime) -> str:
    """Calendar month identifier, e.g. ``2026-03``."""
    return f"{moment.year:04d}-{moment.month:02d}"


def scheduled_idempotency_key(template_id: UUID, now: date | datetime) -> str:
    return f"{template_id}-{period_key(now)}"


def manual_idempotency_key(template_id: UUID, now: datetime) -> str:
    """Key for an independent manual run; unique per millisecond."""
    epoch_ms = int(now.timestamp() * 1000)
    return f"{template_id}-{period_key(now)}-manual-{epoch_ms}"


def add_one_month(value: date) -> date:
    """Same day next month.  Days are capped at 28, so no clamping is needed."""
    if value.month == 12:
        return value.replace(year=value.year + 1, month=1)
    return value.replace(month=value.month + 1)


def next_run_after_period(next_run_date: date, now: date | datetime) -> date:
    """
    Advance one month, then keep rolling until past the month of ``now``.

    A template running on time moves exactly one month.  A template that
    fell behind lands in the month after ``now`` instead of staying due.

    Example:
        next_run_after_period(date(2026, 3, 1), date(2026, 3, 1)) -> date(2026, 4, 1)
        next_run_after_period(date(2026, 1, 1), date(2026, 3, 1)) -> date(2026, 4, 1)
    """
    candidate = add_one_month(next_run_date)
    while (candidate.year, candidate.month) <= (now.year, now.month):
        candidate = add_one_month(candidate)
    return candidate


def initial_next_run_date(start_date: date, day_of_month: int) -> date:
    """
    First run on or after ``start_date`` falling on ``day_of_month``.

    Example:
        initial_next_run_date(date(2026, 3, 10), 1) -> date(2026, 4, 1)
        initial_next_run_date(date(2026, 3, 10), 15) -> date(2026, 3, 15)
    """
    validate_day_of_month(day_of_month)
    candidate = date(start_date.year, start_date.month, day_of_month)
    if candidate < start_date:
        candidate = add_one_month(candidate)
    return candidate


def is_due(next_run_date: date, now: date | datetime) -> bool:
    """A template is due when ``next_run_date <= now``."""
    today = now.date() if isinstance(now, datetime) else now
    return next_run_date <= today
