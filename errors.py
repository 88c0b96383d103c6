from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

CENT = Decimal('0.01')


class FinanceError(Exception):
    status_code = 500

    def __init__(self, message, field=None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self):
        body = {'error': self.message}
        if self.field:
            body['field'] = self.field
        return body


class ValidationError(FinanceError):
    status_code = 400


class AuthenticationError(FinanceError):
    status_code = 401


class NotFoundError(FinanceError):
    """Missing, or owned by someone else. The two are reported the same way."""
    status_code = 404


class ConflictError(FinanceError):
    status_code = 409


class DependencyError(FinanceError):
    status_code = 500


# ---------------------- Input Parsers ----------------------
def require(data, *fields):
    """Raise ValidationError naming the first missing field."""
    for field in fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f'Missing required field: {field}', field=field)


def parse_amount(value, field='amount', positive=False, signed=False) -> Decimal:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f'Missing required field: {field}', field=field)
    if isinstance(value, bool):
        raise ValidationError(f'{field} must be a number', field=field)
    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f'{field} must be a number', field=field)
    if not amount.is_finite():
        raise ValidationError(f'{field} must be a number', field=field)
    if positive and amount <= 0:
        raise ValidationError(f'{field} must be greater than zero', field=field)
    if amount < 0 and not signed:
        raise ValidationError(f'{field} cannot be negative', field=field)
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_datetime(value, field='date', default=None):
    """Accept YYYY-MM-DD or a full ISO timestamp. Aware values are converted to naive UTC."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if default is not None:
            return default
        raise ValidationError(f'Missing required field: {field}', field=field)
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'Invalid {field} format.', field=field)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_id(value, field='id') -> int:
    if value is None or str(value).strip() == '':
        raise ValidationError(f'Missing required field: {field}', field=field)
    try:
        return int(str(value).strip())
    except ValueError:
        # a malformed id can't belong to the caller
        raise NotFoundError('Not found')


def parse_str(value, field, required=True, default=''):
    """Stripped text. Non-string values are rejected rather than coerced."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f'Missing required field: {field}', field=field)
        return default
    if not isinstance(value, str):
        raise ValidationError(f'{field} must be a string', field=field)
    return value.strip()


TRUE_STRINGS = ('true', '1', 'yes', 'on')
FALSE_STRINGS = ('false', '0', 'no', 'off')


def parse_bool(value, field, default=False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
    raise ValidationError(f'{field} must be true or false', field=field)
