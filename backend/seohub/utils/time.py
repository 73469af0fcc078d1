"""Timezone helpers – one place to ask for *now*.

Database columns are naive UTC, API payloads are ISO strings; both flow
through the helpers below so date maths never mixes aware and naive values.
"""

from datetime import date
from datetime import datetime
from datetime import timedelta
from datetime import timezone


def utc_now() -> datetime:  # noqa: D401 – simple utility
    """Return *aware* current time in UTC."""

    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:  # noqa: D401 – simple utility
    """Return *naive* current time in UTC for database columns."""

    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def months_ago(day: date, months: int) -> date:
    """Step *months* calendar months back, clamping to the month's last day."""

    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    # First day of the following month minus one day = last day of *month*
    next_month = date(year + (month // 12), (month % 12) + 1, 1)
    last_day = (next_month - timedelta(days=1)).day
    return date(year, month, min(day.day, last_day))


__all__ = ["utc_now", "utc_now_naive", "to_naive_utc", "months_ago"]
