from __future__ import annotations

import logging
import math
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import update

import ledger
from errors import NotFoundError, ValidationError, parse_amount, parse_datetime, parse_str
from models import db, Goal

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
HUNDRED = Decimal('100')


def available_balance(txs) -> Decimal:
    """All-time income minus all-time expenses. Every goal is measured against this."""
    return ledger.net(txs)


def progress_percent(balance, target) -> Decimal:
    target = Decimal(target)
    if target <= 0:
        raise ValidationError('targetAmount must be greater than zero', field='targetAmount')
    percent = Decimal(balance) / target * HUNDRED
    percent = min(max(percent, ZERO), HUNDRED)
    return percent.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def remaining(target, balance) -> Decimal:
    return max(ZERO, Decimal(target) - Decimal(balance))


def days_remaining(deadline, now=None):
    """Whole days until the deadline, rounded up. Negative once overdue."""
    if deadline is None:
        return None
    now = now or datetime.now()
    return math.ceil((deadline - now).total_seconds() / 86400)


def goal_progress(goal, balance, now=None):
    return {
        **goal.to_dict(),
        'availableBalance': float(balance),
        'progressPercent': float(progress_percent(balance, goal.target_amount)),
        'remaining': float(remaining(goal.target_amount, balance)),
        'daysRemaining': days_remaining(goal.deadline, now),
    }


# ---------------------- Mutations ----------------------
def create_goal(user_id, data):
    name = parse_str(data.get('name'), 'name')
    target = parse_amount(data.get('targetAmount'), 'targetAmount', positive=True)
    deadline = None
    if data.get('deadline'):
        deadline = parse_datetime(data['deadline'], 'deadline')
    goal = Goal(user_id=user_id, name=name, target_amount=target, current_amount=ZERO, deadline=deadline)
    db.session.add(goal)
    db.session.commit()
    return goal


def add_funds(user_id, goal_id, amount):
    """Atomically bump ``current_amount``; the owner check is part of the same UPDATE."""
    amount = parse_amount(amount, positive=True)
    result = db.session.execute(
        update(Goal)
        .where(Goal.id == goal_id, Goal.user_id == user_id)
        .values(current_amount=Goal.current_amount + amount)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.session.rollback()
        raise NotFoundError('Goal not found')
    db.session.commit()
    goal = db.session.get(Goal, goal_id)
    db.session.refresh(goal)
    logger.info('Added %s to goal %s', amount, goal_id)
    return goal


def delete_goal(user_id, goal_id):
    deleted = Goal.query.filter_by(id=goal_id, user_id=user_id).delete()
    if not deleted:
        db.session.rollback()
        raise NotFoundError('Goal not found')
    db.session.commit()
