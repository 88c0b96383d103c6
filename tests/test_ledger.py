from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

import ledger
from errors import ValidationError


def tx(amount, ttype, category='Other', when=datetime(2024, 3, 15, 12, 0)):
    return SimpleNamespace(amount=Decimal(amount), ttype=ttype, category=category, date=when)


def sample():
    return [
        tx('1000.00', 'income', 'Salary'),
        tx('250.10', 'expense', 'Food & Dining'),
        tx('99.90', 'EXPENSE', 'Shopping'),
        tx('150.00', 'expense', 'Food & Dining'),
        tx('20.00', 'Income', 'Business'),
    ]


def test_totals_and_net_agree():
    txs = sample()
    assert ledger.total_income(txs) == Decimal('1020.00')
    assert ledger.total_expenses(txs) == Decimal('500.00')
    assert ledger.net(txs) == ledger.total_income(txs) - ledger.total_expenses(txs)


def test_type_matching_is_case_insensitive():
    txs = [tx('10', 'INCOME'), tx('5', 'Expense')]
    assert ledger.net(txs) == Decimal('5')


def test_empty_ledger_is_all_zero():
    summary = ledger.summarize([])
    assert summary.income == summary.expenses == summary.net == 0
    assert summary.savings_rate == 0
    assert ledger.category_breakdown([]) == []


def test_savings_rate_is_zero_without_income():
    assert ledger.savings_rate([tx('40', 'expense')]) == 0


def test_savings_rate():
    txs = [tx('1000', 'income'), tx('400', 'expense')]
    assert ledger.savings_rate(txs) == Decimal('60.00')


def test_category_breakdown_partitions_expenses():
    txs = sample()
    shares = ledger.category_breakdown(txs)
    assert [s.category for s in shares] == ['Food & Dining', 'Shopping']
    assert shares[0].amount == Decimal('400.10')
    assert sum(s.amount for s in shares) == ledger.total_expenses(txs)
    assert shares[0].percent == Decimal('80.02')


def test_category_breakdown_filter():
    shares = ledger.category_breakdown(sample(), category='Shopping')
    assert len(shares) == 1
    assert shares[0].percent == Decimal('100.00')


def test_monthly_trend_buckets_trailing_months():
    txs = [
        tx('100', 'income', when=datetime(2024, 1, 31, 23, 0)),
        tx('30', 'expense', when=datetime(2024, 3, 1)),
        tx('500', 'income', when=datetime(2023, 6, 1)),  # outside the window
    ]
    buckets = ledger.monthly_trend(txs, months=6, today=date(2024, 3, 20))
    assert [b.month for b in buckets] == ['2023-10', '2023-11', '2023-12', '2024-01', '2024-02', '2024-03']
    by_month = {b.month: b for b in buckets}
    assert by_month['2024-01'].income == Decimal('100')
    assert by_month['2024-03'].net == Decimal('-30')
    assert by_month['2023-12'].income == 0


def test_trailing_months_cross_year_from_month_end():
    assert ledger.trailing_months(3, date(2024, 3, 31)) == ['2024-01', '2024-02', '2024-03']
    assert ledger.trailing_months(14, date(2024, 1, 1))[:2] == ['2022-12', '2023-01']


def test_filter_transactions_is_inclusive():
    start, end = datetime(2024, 3, 15, 12, 0), datetime(2024, 3, 15, 12, 0)
    assert len(ledger.filter_transactions(sample(), start=start, end=end)) == 5
    assert ledger.filter_transactions(sample(), end=datetime(2024, 3, 1)) == []


def test_period_windows():
    today = date(2024, 5, 15)  # a Wednesday
    start, end = ledger.period_window('weekly', today)
    assert start == datetime(2024, 5, 13) and end == datetime(2024, 5, 19, 23, 59, 59)
    start, end = ledger.period_window('quarterly', today)
    assert start == datetime(2024, 4, 1) and end == datetime(2024, 6, 30, 23, 59, 59)
    start, end = ledger.period_window('monthly', today)
    assert end == datetime(2024, 5, 31, 23, 59, 59)


def test_custom_period_needs_both_ends():
    with pytest.raises(ValidationError):
        ledger.period_window('custom', date(2024, 5, 15), start=date(2024, 1, 1))
    with pytest.raises(ValidationError):
        ledger.period_window('fortnightly', date(2024, 5, 15))
