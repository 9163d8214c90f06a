"""
Business-day helpers.

Timestamps are stored as naive UTC. The business day is the calendar
day in the operator's timezone (BUSINESS_UTC_OFFSET_HOURS), which is
what statements, payments and snapshots are keyed by.
"""

from datetime import date, datetime, time, timedelta, timezone

from banca_ledger.config import get_settings


def _offset() -> timedelta:
    return timedelta(hours=get_settings().BUSINESS_UTC_OFFSET_HOURS)


def business_date_of(moment: datetime) -> date:
    """Business date of a naive-UTC timestamp."""
    return (moment + _offset()).date()


def business_today() -> date:
    return business_date_of(datetime.now(timezone.utc).replace(tzinfo=None))


def day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    """[start, end) of a business day, expressed in naive UTC."""
    start = datetime.combine(day, time.min) - _offset()
    return start, start + timedelta(days=1)


def month_of(day: date) -> str:
    return day.strftime("%Y-%m")


def previous_month(month: str) -> str:
    """"2025-01" -> "2024-12"."""
    year, number = (int(part) for part in month.split("-"))
    if number == 1:
        return f"{year - 1}-12"
    return f"{year}-{number - 1:02d}"


def next_month(month: str) -> str:
    year, number = (int(part) for part in month.split("-"))
    if number == 12:
        return f"{year + 1}-01"
    return f"{year}-{number + 1:02d}"
