"""Income/expense aggregation over a snapshot of transactions.

Everything here is a pure function over objects that expose ``amount``,
``ttype``, ``category`` and ``date``; nothing touches the database.
"""
from __future__ import annotations

import calendar
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from dateutil.relativedelta import relativedelta

from errors import ValidationError

ZERO = Decimal('0')
CENT = Decimal('0.01')
HUNDRED = Decimal('100')

INCOME = 'income'
EXPENSE = 'expense'
REPORT_PERIODS = ('weekly', 'monthly', 'quarterly', 'yearly', 'custom')


@dataclass
class LedgerSummary:
    income: Decimal
    expenses: Decimal
    net: Decimal
    savings_rate: Decimal
    count: int

    def to_dict(self):
        return {
            'income': float(self.income),
            'expense': float(self.expenses),
            'balance': float(self.net),
            'savingsRate': float(self.savings_rate),
            'count': self.count,
        }


@dataclass
class CategoryShare:
    category: str
    amount: Decimal
    percent: Decimal

    def to_dict(self):
        return {'category': self.category, 'amount': float(self.amount), 'percent': float(self.percent)}


@dataclass
class MonthBucket:
    month: str  # YYYY-MM
    income: Decimal
    expenses: Decimal

    @property
    def net(self) -> Decimal:
        return self.income - self.expenses

    def to_dict(self):
        return {
            'month': self.month,
            'income': float(self.income),
            'expense': float(self.expenses),
            'net': float(self.net),
        }


def _kind(tx) -> str:
    return (tx.ttype or '').strip().lower()


def _as_date(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if not whole:
        return ZERO
    return (part / whole * HUNDRED).quantize(CENT, rounding=ROUND_HALF_UP)


def _sum(txs, kind) -> Decimal:
    return sum((Decimal(tx.amount) for tx in txs if _kind(tx) == kind), ZERO)


def total_income(txs: Iterable) -> Decimal:
    return _sum(txs, INCOME)


def total_expenses(txs: Iterable) -> Decimal:
    return _sum(txs, EXPENSE)


def net(txs: Iterable) -> Decimal:
    txs = list(txs)
    return total_income(txs) - total_expenses(txs)


def savings_rate(txs: Iterable) -> Decimal:
    """Net as a percentage of income; 0 when there is no income."""
    txs = list(txs)
    income = total_income(txs)
    return _percent(income - total_expenses(txs), income)


def summarize(txs: Iterable) -> LedgerSummary:
    txs = list(txs)
    income = total_income(txs)
    expenses = total_expenses(txs)
    return LedgerSummary(
        income=income,
        expenses=expenses,
        net=income - expenses,
        savings_rate=_percent(income - expenses, income),
        count=len(txs),
    )


def filter_transactions(txs: Iterable, start=None, end=None, category: str | None = None) -> list:
    """Keep transactions dated within [start, end] (both optional) and matching category."""
    kept = []
    for tx in txs:
        if start is not None and tx.date < start:
            continue
        if end is not None and tx.date > end:
            continue
        if category and tx.category != category:
            continue
        kept.append(tx)
    return kept


def category_breakdown(txs: Iterable, category: str | None = None) -> list[CategoryShare]:
    """Expenses per category, largest first, each with its share of total expenses."""
    totals = defaultdict(lambda: ZERO)
    for tx in txs:
        if _kind(tx) != EXPENSE:
            continue
        if category and tx.category != category:
            continue
        totals[tx.category] += Decimal(tx.amount)
    grand_total = sum(totals.values(), ZERO)
    ordered = sorted(totals.items(), key=lambda item: (-item[1], item[0]))
    return [CategoryShare(name, amount, _percent(amount, grand_total)) for name, amount in ordered]


def month_key(value) -> str:
    return f'{value.year:04d}-{value.month:02d}'


def trailing_months(months: int, today: date | None = None) -> list[str]:
    """The last ``months`` YYYY-MM keys ending with today's month, oldest first."""
    first = (today or date.today()).replace(day=1)
    return [(first - relativedelta(months=i)).strftime('%Y-%m') for i in range(months - 1, -1, -1)]


def monthly_trend(txs: Iterable, months: int = 6, today: date | None = None) -> list[MonthBucket]:
    buckets = {key: MonthBucket(key, ZERO, ZERO) for key in trailing_months(months, today)}
    for tx in txs:
        bucket = buckets.get(month_key(tx.date))
        if bucket is None:
            continue
        if _kind(tx) == INCOME:
            bucket.income += Decimal(tx.amount)
        elif _kind(tx) == EXPENSE:
            bucket.expenses += Decimal(tx.amount)
    return list(buckets.values())


# ---------------------- Report Periods ----------------------
def _day_bounds(first: date, last: date):
    return datetime.combine(first, time.min), datetime.combine(last, time(23, 59, 59))


def period_window(period: str, today: date | None = None, start=None, end=None):
    """Return the (start, end) datetimes covered by a report period."""
    today = _as_date(today or date.today())
    period = (period or 'monthly').strip().lower()
    if period == 'weekly':
        first = today - timedelta(days=today.weekday())
        return _day_bounds(first, first + timedelta(days=6))
    if period == 'monthly':
        last_day = calendar.monthrange(today.year, today.month)[1]
        return _day_bounds(today.replace(day=1), today.replace(day=last_day))
    if period == 'quarterly':
        first_month = 3 * ((today.month - 1) // 3) + 1
        last_month = first_month + 2
        last_day = calendar.monthrange(today.year, last_month)[1]
        return _day_bounds(date(today.year, first_month, 1), date(today.year, last_month, last_day))
    if period == 'yearly':
        return _day_bounds(date(today.year, 1, 1), date(today.year, 12, 31))
    if period == 'custom':
        if start is None or end is None:
            raise ValidationError('Custom reports need both start and end dates.', field='start')
        first, last = _as_date(start), _as_date(end)
        if first > last:
            raise ValidationError('start must not be after end.', field='start')
        return _day_bounds(first, last)
    raise ValidationError(f'Unknown report period: {period}', field='period')
