from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from dateutil.relativedelta import relativedelta

from errors import ValidationError

CYCLES = ('WEEKLY', 'MONTHLY', 'YEARLY')

# (multiplier, divisor) to a monthly amount; WEEKLY is a flat x4, not 52/12.
CYCLE_FACTORS = {
    'WEEKLY': (Decimal('4'), Decimal('1')),
    'MONTHLY': (Decimal('1'), Decimal('1')),
    'YEARLY': (Decimal('1'), Decimal('12')),
}

# step to the next occurrence; month steps clamp to the last day of short months
CYCLE_STEPS = {
    'WEEKLY': relativedelta(weeks=1),
    'MONTHLY': relativedelta(months=1),
    'YEARLY': relativedelta(years=1),
}


def normalize_cycle(value, field='billingCycle') -> str:
    cycle = str(value or '').strip().upper()
    if cycle not in CYCLES:
        raise ValidationError(f'{field} must be one of: {", ".join(CYCLES)}', field=field)
    return cycle


def normalized_monthly_cost(sub) -> Decimal:
    multiplier, divisor = CYCLE_FACTORS[str(sub.billing_cycle).upper()]
    return Decimal(sub.amount) * multiplier / divisor


def monthly_total(subs) -> Decimal:
    """Equivalent monthly cost of every active subscription, to the cent."""
    total = sum((normalized_monthly_cost(s) for s in subs if s.active), Decimal('0'))
    return total.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def next_occurrence(value, cycle):
    return value + CYCLE_STEPS[normalize_cycle(cycle, field='frequency')]


def is_recurring(tx) -> bool:
    return bool(tx.is_recurring and tx.frequency)


def recurring_transactions(txs) -> list:
    return [tx for tx in txs if is_recurring(tx)]
