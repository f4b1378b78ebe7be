"""Dashboard aggregates computed from an already loaded entity set.

Nothing in here touches the database. Month membership for the
"this month / previous month" lists follows each movement's stored
reconciliation tag, while the six-month series and the category breakdown
bucket by the calendar ``date``. The two can disagree when a caller stored a
tag that does not match the date.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable, Sequence

from models import MovementKind
from periods import add_months, month_end, month_key, trailing_months
from schemas import (
    AccountOut,
    CategoryOut,
    CategoryStat,
    DashboardOut,
    MonthlyStat,
    MovementOut,
)

SERIES_MONTHS = 6
UNCATEGORIZED_NAME = "Uncategorized"
UNCATEGORIZED_COLOR = "#64748b"


def total_balance(accounts: Iterable[AccountOut]) -> int:
    return sum(account.computed_balance for account in accounts)


def movements_in_reconciliation_month(
    movements: Iterable[MovementOut], month: str
) -> list[MovementOut]:
    return [m for m in movements if m.reconciliation_month == month]


def monthly_series(
    movements: Iterable[MovementOut], today: date, months: int = SERIES_MONTHS
) -> list[MonthlyStat]:
    window = trailing_months(today, months)
    income: dict[str, int] = defaultdict(int)
    expense: dict[str, int] = defaultdict(int)
    for m in movements:
        key = month_key(m.date)
        if m.kind == MovementKind.income:
            income[key] += m.amount
        elif m.kind == MovementKind.expense:
            expense[key] += m.amount
    out: list[MonthlyStat] = []
    for first in window:
        key = month_key(first)
        out.append(MonthlyStat(month=key, income=income[key], expense=expense[key]))
    return out


def category_breakdown(
    movements: Iterable[MovementOut],
    categories: Iterable[CategoryOut],
    today: date,
    months: int = SERIES_MONTHS,
) -> list[CategoryStat]:
    window = trailing_months(today, months)
    start, end = window[0], month_end(window[-1])
    by_id = {c.id: c for c in categories}
    totals: dict[int, int] = defaultdict(int)
    for m in movements:
        if m.kind != MovementKind.expense or not (start <= m.date <= end):
            continue
        totals[m.category_id] += m.amount

    stats = []
    for category_id, amount in totals.items():
        category = by_id.get(category_id)
        stats.append(
            CategoryStat(
                category_id=category_id,
                name=category.name if category else UNCATEGORIZED_NAME,
                color=category.color if category else UNCATEGORIZED_COLOR,
                amount=amount,
            )
        )
    stats.sort(key=lambda s: (-s.amount, s.name))
    return stats


def build_dashboard(
    accounts: Sequence[AccountOut],
    movements: Sequence[MovementOut],
    categories: Sequence[CategoryOut],
    today: date,
) -> DashboardOut:
    current = month_key(today)
    previous = month_key(add_months(today, -1))
    ordered = sorted(movements, key=lambda m: (m.date, m.id), reverse=True)
    return DashboardOut(
        total_balance=total_balance(accounts),
        current_month=current,
        previous_month=previous,
        movements=ordered,
        movements_this_month=movements_in_reconciliation_month(ordered, current),
        movements_previous_month=movements_in_reconciliation_month(ordered, previous),
        monthly_series=monthly_series(ordered, today),
        category_breakdown=category_breakdown(ordered, categories, today),
        accounts=list(accounts),
        categories=list(categories),
    )
