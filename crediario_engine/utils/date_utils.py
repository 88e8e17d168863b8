"""Date manipulation utilities"""

import calendar
from datetime import date, datetime, time, timezone


def add_months_clamped(start: date, months: int, day: int) -> date:
    """
    Date on `day` of the month `months` after `start`.

    The day is clamped to the month's last valid day, so day 31 in a 30-day
    month gives the 30th instead of rolling into the next month.
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))


def month_key(value: date) -> str:
    """'YYYY-MM' bucket used for monthly credit commitments"""
    return value.strftime("%Y-%m")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min, tzinfo=value.tzinfo)
