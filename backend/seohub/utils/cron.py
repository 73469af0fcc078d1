"""Cron helpers backed by APScheduler's ``CronTrigger``.

Schedules store standard five-field crontab strings evaluated in UTC.
"""

from __future__ import annotations

import logging
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from apscheduler.triggers.cron import CronTrigger

from seohub.utils.time import to_naive_utc
from seohub.utils.time import utc_now

logger = logging.getLogger(__name__)

# Crontab weekday numbers; 0 and 7 are both Sunday.
_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat", "sun")


def _crontab_weekdays(field: str) -> str:
    """Rewrite numeric crontab weekday terms as explicit day names.

    Ranges and steps are expanded over crontab's own numbering so that
    ``1-5/2`` means Monday, Wednesday and Friday.  Anything that is not a
    plain numeric term is passed through for ``CronTrigger`` to judge.
    """

    days = []
    for term in field.split(","):
        base, slash, step = term.partition("/")
        if base == "*":
            if not slash:
                days.append(term)
                continue
            first, last = "0", "6"
        else:
            first, dash, last = base.partition("-")
            if not dash:
                last = "6" if slash else first
        if not (first.isdigit() and last.isdigit() and (step.isdigit() or not slash)):
            days.append(term)
            continue
        start, end, stride = int(first), int(last), int(step or 1)
        if start > end or end >= len(_WEEKDAYS) or stride < 1:
            days.append(term)
            continue
        days.extend(_WEEKDAYS[day] for day in range(start, end + 1, stride))
    return ",".join(dict.fromkeys(days))


def crontab_trigger(expr: str) -> CronTrigger:
    """Build a UTC ``CronTrigger`` from a five-field crontab string.

    APScheduler numbers weekdays from Monday while crontab starts at Sunday,
    so numeric day-of-week values are rewritten as names first.
    """

    fields = expr.split()
    if len(fields) == 5:
        fields[4] = _crontab_weekdays(fields[4])
        expr = " ".join(fields)
    return CronTrigger.from_crontab(expr, timezone=timezone.utc)


def validate_cron_or_raise(expr: str | None) -> None:
    """Raise ``ValueError`` if *expr* is not a valid crontab string."""

    if expr is None:
        return

    try:
        crontab_trigger(expr)
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Invalid cron expression: {expr} ({exc})") from exc


def calculate_next_run(cron_pattern: str, from_date: datetime | None = None) -> datetime:
    """Return the next fire time after *from_date* as a naive UTC datetime.

    An unparsable pattern falls back to 24 hours after *from_date*.
    """

    base = from_date or utc_now()
    if base.tzinfo is None:
        base = base.replace(tzinfo=timezone.utc)

    try:
        trigger = crontab_trigger(cron_pattern)
    except ValueError:
        logger.error("Error parsing cron pattern %r, defaulting to +24h", cron_pattern)
        return to_naive_utc(base + timedelta(hours=24))

    # Strictly after *base*; ``get_next_fire_time`` is inclusive.
    next_fire = trigger.get_next_fire_time(None, base + timedelta(seconds=1))
    if next_fire is None:
        return to_naive_utc(base + timedelta(hours=24))
    return to_naive_utc(next_fire)


__all__ = ["crontab_trigger", "validate_cron_or_raise", "calculate_next_run"]
