"""Monthly budgets (planned vs. actual) and per-category spending caps."""
from __future__ import annotations

import calendar
import logging
import re
from datetime import date, datetime, time

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

import ledger
from errors import ConflictError, DependencyError, NotFoundError, ValidationError, parse_amount, parse_str
from models import db, CategoryBudget, MonthlyBudget, Transaction

logger = logging.getLogger(__name__)

MONTH_RE = re.compile(r'^(\d{4})-(\d{2})$')
BUDGET_PERIODS = ('WEEKLY', 'MONTHLY', 'YEARLY')


def month_window(month: str):
    """First second and last second (23:59:59) of a YYYY-MM month."""
    match = MONTH_RE.match(month.strip()) if isinstance(month, str) else None
    if not match:
        raise ValidationError('month must look like YYYY-MM', field='month')
    year, mon = int(match.group(1)), int(match.group(2))
    if not 1 <= mon <= 12:
        raise ValidationError('month must look like YYYY-MM', field='month')
    last_day = calendar.monthrange(year, mon)[1]
    return datetime(year, mon, 1), datetime.combine(date(year, mon, last_day), time(23, 59, 59))


def _transactions_between(user_id, start, end):
    return Transaction.query.filter(
        Transaction.user_id == user_id,
        Transaction.date >= start,
        Transaction.date <= end,
    ).all()


# ---------------------- Monthly Budgets ----------------------
def reconcile_and_fetch(user_id, month):
    """Return the budget for ``month`` with its actuals recomputed and saved, or None.

    This is a read that writes: the recomputed actual income and expenses are
    committed back onto the row before it is returned.
    """
    start, end = month_window(month)
    try:
        budget = MonthlyBudget.query.filter_by(user_id=user_id, month=month.strip()).first()
        if budget is None:
            return None
        txs = _transactions_between(user_id, start, end)
        budget.actual_income = ledger.total_income(txs)
        budget.actual_expenses = ledger.total_expenses(txs)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception('Reconciling budget %s for user %s failed', month, user_id)
        raise DependencyError('Failed to fetch budget') from exc
    return budget


def create_monthly_budget(user_id, month, planned_income, planned_expenses):
    month = parse_str(month, 'month')
    month_window(month)
    planned_income = parse_amount(planned_income, 'plannedIncome')
    planned_expenses = parse_amount(planned_expenses, 'plannedExpenses')

    if MonthlyBudget.query.filter_by(user_id=user_id, month=month).first():
        raise ConflictError(f'A budget for {month} already exists.')
    budget = MonthlyBudget(
        user_id=user_id,
        month=month,
        planned_income=planned_income,
        planned_expenses=planned_expenses,
        actual_income=0,
        actual_expenses=0,
    )
    db.session.add(budget)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(f'A budget for {month} already exists.') from exc
    logger.info('Created monthly budget %s for user %s', month, user_id)
    return budget


def list_monthly_budgets(user_id):
    return MonthlyBudget.query.filter_by(user_id=user_id).order_by(MonthlyBudget.month.desc()).all()


def delete_monthly_budget(user_id, budget_id):
    deleted = MonthlyBudget.query.filter_by(id=budget_id, user_id=user_id).delete()
    if not deleted:
        db.session.rollback()
        raise NotFoundError('Budget not found')
    db.session.commit()


# ---------------------- Category Budgets ----------------------
def create_category_budget(user_id, data):
    category = parse_str(data.get('category'), 'category')
    period = parse_str(data.get('period'), 'period').upper()
    if period not in BUDGET_PERIODS:
        raise ValidationError(f'period must be one of: {", ".join(BUDGET_PERIODS)}', field='period')
    budget = CategoryBudget(
        user_id=user_id,
        category=category,
        amount=parse_amount(data['amount'], positive=True),
        period=period,
        start_date=datetime.now(),
    )
    db.session.add(budget)
    db.session.commit()
    return budget


def list_category_budgets(user_id):
    return CategoryBudget.query.filter_by(user_id=user_id).order_by(CategoryBudget.created_at.desc()).all()


def delete_category_budget(user_id, budget_id):
    deleted = CategoryBudget.query.filter_by(id=budget_id, user_id=user_id).delete()
    if not deleted:
        db.session.rollback()
        raise NotFoundError('Budget not found')
    db.session.commit()


def category_budget_status(budget, txs, today: date | None = None):
    """Spending against a category cap for the period containing ``today``."""
    period = {'WEEKLY': 'weekly', 'MONTHLY': 'monthly', 'YEARLY': 'yearly'}[budget.period]
    start, end = ledger.period_window(period, today)
    in_period = ledger.filter_transactions(txs, start=start, end=end, category=budget.category)
    spent = ledger.total_expenses(in_period)
    remaining = max(budget.amount - spent, 0)
    percent_used = spent / budget.amount * 100 if budget.amount else 0
    return {
        **budget.to_dict(),
        'spent': float(spent),
        'remaining': float(remaining),
        'percentUsed': round(float(percent_used), 2),
        'periodStart': start.isoformat(),
        'periodEnd': end.isoformat(),
    }
