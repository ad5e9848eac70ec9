from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Any


def add_months(day: date, months: int) -> date:
    """Calendar month arithmetic, clamping to the last day of the target month."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def add_years(day: date, years: int) -> date:
    return add_months(day, 12 * years)


def parse_day(value: Any) -> date | None:
    """Accepts date/datetime objects and YYYY-MM-DD or YYYY/MM/DD strings (time part ignored)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or len(value) < 10:
        return None
    try:
        return date.fromisoformat(value[:10].replace("/", "-"))
    except ValueError:
        return None


def display_day(day: date) -> str:
    return day.strftime("%b %d, %Y")
