from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(d: date, count: int) -> date:
    month_index = (d.year * 12) + (d.month - 1) + count
    year = month_index // 12
    month = (month_index % 12) + 1
    return date(year, month, 1)


def month_end(d: date) -> date:
    return add_months(d, 1) - date.resolution


def month_key(d: date) -> str:
    """Reconciliation-month tag for a calendar day, e.g. ``2025-03``."""
    return f"{d.year:04d}-{d.month:02d}"


def trailing_months(today: date, count: int = 6) -> list[date]:
    """First days of the ``count`` calendar months ending with ``today``'s."""
    first = month_start(today)
    return [add_months(first, offset) for offset in range(-(count - 1), 1)]


def resolve_period(
    period: Optional[str],
    start: Optional[str],
    end: Optional[str],
    *,
    today: Optional[date] = None,
) -> Optional[Period]:
    today = today or date.today()
    if not period or period == "all":
        return None
    if period == "last_month":
        last_month_start = add_months(today, -1)
        return Period("last_month", last_month_start, month_end(last_month_start))
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValueError(f"Unknown period '{period}'")

    return Period("this_month", month_start(today), month_end(today))
