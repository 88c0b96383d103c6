import csv
import io
import logging
import os
import secrets
from datetime import datetime, timedelta
from functools import wraps

import click
from flask import Blueprint, Flask, current_app, jsonify, request, session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash

import billing
import budgets
import goals
import ledger
import mailer
import recurring
from config import Config
from errors import (
    AuthenticationError, ConflictError, DependencyError, FinanceError, NotFoundError, ValidationError,
    parse_amount, parse_bool, parse_datetime, parse_id, parse_str, require,
)
from ml.insights import category_trends, generate_insights, predict_next_month_expense
from models import db, PLANS, BankAccount, Goal, Subscription, Transaction, User

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES = [
    'Food & Dining', 'Transportation', 'Shopping', 'Entertainment', 'Bills & Utilities',
    'Healthcare', 'Salary', 'Business', 'Other',
]
MAX_TREND_MONTHS = 120
MIN_PASSWORD_LENGTH = 8

bp = Blueprint('finance', __name__)


def create_app(config_object=None):
    app = Flask(__name__)
    app.config.from_object(config_object or Config)
    logging.basicConfig(level=app.config.get('LOG_LEVEL', 'INFO'))
    db.init_app(app)
    app.extensions['mailer'] = mailer.build_mailer(app.config)
    app.register_blueprint(bp)
    register_error_handlers(app)
    register_commands(app)
    with app.app_context():
        db.create_all()
    return app


# ---------------------- Error Handling ----------------------
def register_error_handlers(app):
    @app.errorhandler(FinanceError)
    def handle_finance_error(exc):
        if exc.status_code >= 500:
            db.session.rollback()
            logger.error('%s on %s %s: %s', type(exc).__name__, request.method, request.path, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(exc):
        db.session.rollback()
        logger.exception('Database error on %s %s', request.method, request.path)
        return jsonify({'error': 'Something went wrong'}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        return jsonify({'error': exc.description}), exc.code

    @app.errorhandler(Exception)
    def handle_unexpected(exc):
        db.session.rollback()
        logger.exception('Unhandled error on %s %s', request.method, request.path)
        return jsonify({'error': 'Something went wrong'}), 500


# ---------------------- Auth Helpers ----------------------
def current_user():
    uid = session.get('user_id')
    if uid:
        return db.session.get(User, uid)
    return None


def login_required(view_func):
    @wraps(view_func)
    def wrapped(*args, **kwargs):
        if not current_user():
            raise AuthenticationError('Unauthorized')
        return view_func(*args, **kwargs)
    return wrapped


def json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _mailer():
    return current_app.extensions['mailer']


def _user_transactions(user):
    return Transaction.query.filter_by(user_id=user.id).all()


# ---------------------- Routes: Auth ----------------------
@bp.route('/api/register', methods=['POST'])
def register():
    data = json_body()
    email = parse_str(data.get('email'), 'email').lower()
    password = parse_str(data.get('password'), 'password')
    plan = parse_str(data.get('plan'), 'plan', required=False, default='FREE').upper()
    if plan not in PLANS:
        raise ValidationError(f'plan must be one of: {", ".join(PLANS)}', field='plan')
    if User.query.filter_by(email=email).first():
        raise ConflictError('User already exists')
    user = User(
        email=email,
        name=parse_str(data.get('name'), 'name', required=False) or email.split('@')[0],
        password_hash=generate_password_hash(password),
        plan=plan,
        verification_token=secrets.token_hex(32),
        email_verified=False,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError('User already exists') from exc
    logger.info('Registered user %s', user.id)
    mailer.send_verification_email(_mailer(), current_app.config['APP_BASE_URL'], user.email, user.verification_token)
    return jsonify({
        'user': {'id': user.id, 'email': user.email, 'name': user.name},
        'message': 'Registration successful. Please check your email to verify your account.',
    }), 201


@bp.route('/api/login', methods=['POST'])
def login():
    data = json_body()
    email = parse_str(data.get('email'), 'email', required=False).lower()
    password = parse_str(data.get('password'), 'password', required=False)
    user = User.query.filter_by(email=email).first()
    if not user or not check_password_hash(user.password_hash, password):
        raise AuthenticationError('Invalid credentials.')
    session.clear()
    session['user_id'] = user.id
    return jsonify({'user': user.to_dict()})


@bp.route('/api/logout', methods=['POST'])
def logout():
    session.clear()
    return jsonify({'message': 'Logged out.'})


@bp.route('/api/auth/verify-email', methods=['POST'])
def verify_email():
    data = json_body()
    token = parse_str(data.get('token'), 'token')
    user = User.query.filter_by(verification_token=token).first()
    if not user:
        raise ValidationError('Invalid or expired verification token', field='token')
    if user.email_verified:
        raise ValidationError('Email is already verified. You can sign in now.', field='token')
    user.email_verified = True
    user.verification_token = None
    db.session.commit()
    return jsonify({'message': 'Email verified successfully! You can now sign in.'})


@bp.route('/api/auth/forgot-password', methods=['POST'])
def forgot_password():
    data = json_body()
    email = parse_str(data.get('email'), 'email').lower()
    user = User.query.filter_by(email=email).first()
    if user:
        user.reset_token = secrets.token_hex(32)
        user.reset_token_expiry = datetime.now() + timedelta(hours=current_app.config['RESET_TOKEN_HOURS'])
        db.session.commit()
        mailer.send_password_reset_email(_mailer(), current_app.config['APP_BASE_URL'], user.email, user.reset_token)
    return jsonify({'message': 'If that email is registered, a reset link is on its way.'})


@bp.route('/api/auth/reset-password', methods=['POST'])
def reset_password():
    data = json_body()
    token = parse_str(data.get('token'), 'token')
    password = parse_str(data.get('password'), 'password')
    user = User.query.filter_by(reset_token=token).first()
    if not user or not user.reset_token_expiry or user.reset_token_expiry < datetime.now():
        raise ValidationError('Invalid or expired reset token', field='token')
    user.password_hash = generate_password_hash(password)
    user.reset_token = None
    user.reset_token_expiry = None
    db.session.commit()
    return jsonify({'message': 'Password updated. You can now sign in.'})


# ---------------------- Routes: User ----------------------
PREFERENCE_FIELDS = {
    'accountType': 'account_type',
    'theme': 'theme',
    'language': 'language',
    'currency': 'currency',
    'dateFormat': 'date_format',
}


@bp.route('/api/user/preferences', methods=['GET'])
@login_required
def get_preferences():
    return jsonify(current_user().preferences())


@bp.route('/api/user/preferences', methods=['PUT'])
@login_required
def update_preferences():
    user = current_user()
    data = json_body()
    for key, attr in PREFERENCE_FIELDS.items():
        value = data.get(key)
        if value:
            setattr(user, attr, parse_str(value, key))
    db.session.commit()
    return jsonify({'success': True, 'preferences': user.preferences()})


@bp.route('/api/auth/change-password', methods=['POST'])
@login_required
def change_password():
    user = current_user()
    data = json_body()
    current = parse_str(data.get('currentPassword'), 'currentPassword')
    new = parse_str(data.get('newPassword'), 'newPassword')
    if len(new) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters', field='newPassword')
    if not check_password_hash(user.password_hash, current):
        raise ValidationError('Current password is incorrect', field='currentPassword')
    user.password_hash = generate_password_hash(new)
    db.session.commit()
    logger.info('User %s changed password', user.id)
    return jsonify({'message': 'Password changed successfully'})


@bp.route('/api/user/delete-account', methods=['DELETE'])
@login_required
def delete_user_account():
    user = current_user()
    user_id = user.id
    # relationships cascade, so every owned row goes with the user
    db.session.delete(user)
    db.session.commit()
    session.clear()
    logger.info('Deleted account %s', user_id)
    return jsonify({'message': 'Account deleted successfully'})


@bp.route('/api/user/export-data')
@login_required
def export_data():
    user = current_user()
    txs = Transaction.query.filter_by(user_id=user.id).order_by(Transaction.date.desc()).all()
    user_goals = Goal.query.filter_by(user_id=user.id).order_by(Goal.created_at.desc()).all()
    return jsonify({
        'exportDate': datetime.now().isoformat(),
        'user': {
            **user.to_dict(),
            'transactions': [t.to_dict() for t in txs],
            'goals': [g.to_dict() for g in user_goals],
        },
        'summary': {'totalTransactions': len(txs), 'totalGoals': len(user_goals)},
    })


@bp.route('/api/categories')
def categories():
    return jsonify({'categories': DEFAULT_CATEGORIES})


# ---------------------- Routes: Transactions ----------------------
def _apply_year_month_filters(query, year, month):
    """Restrict to a calendar year, or a single month of it, by date range."""
    if year and month:
        start, end = budgets.month_window(f'{year:04d}-{month:02d}')
    elif year:
        start, end = datetime(year, 1, 1), datetime(year, 12, 31, 23, 59, 59)
    else:
        return query
    return query.filter(Transaction.date >= start, Transaction.date <= end)


def _filtered_transactions(user):
    year = request.args.get('year', type=int)
    month = request.args.get('month', type=int)
    if month and not 1 <= month <= 12:
        raise ValidationError('month must be between 1 and 12', field='month')
    if month and not year:
        year = datetime.now().year
    q = _apply_year_month_filters(Transaction.query.filter_by(user_id=user.id), year, month)
    t_type = (request.args.get('type') or '').lower()
    if t_type in (ledger.INCOME, ledger.EXPENSE):
        q = q.filter_by(ttype=t_type)
    return q.order_by(Transaction.date.desc(), Transaction.id.desc()).all()


@bp.route('/api/transactions', methods=['GET'])
@login_required
def list_transactions():
    return jsonify([tx.to_dict() for tx in _filtered_transactions(current_user())])


@bp.route('/api/transactions', methods=['POST'])
@login_required
def add_transaction():
    user = current_user()
    data = json_body()
    amount = parse_amount(data.get('amount'))
    ttype = parse_str(data.get('type'), 'type').lower()
    if ttype not in (ledger.INCOME, ledger.EXPENSE):
        raise ValidationError('Type must be income or expense.', field='type')
    tdate = parse_datetime(data.get('date'), default=datetime.now())
    category = parse_str(data.get('category'), 'category', required=False) or 'Other'
    description = parse_str(data.get('description'), 'description', required=False)

    tx = Transaction(
        user_id=user.id, date=tdate, amount=amount, ttype=ttype,
        category=category, description=description,
    )
    if parse_bool(data.get('isRecurring'), 'isRecurring'):
        frequency = recurring.normalize_cycle(
            parse_str(data.get('frequency'), 'frequency', required=False, default='monthly'), field='frequency')
        tx.is_recurring = True
        tx.frequency = frequency
        tx.next_date = parse_datetime(data.get('nextDate'), 'nextDate',
                                      default=recurring.next_occurrence(tdate, frequency))
    db.session.add(tx)
    db.session.commit()
    return jsonify(tx.to_dict()), 201


@bp.route('/api/transactions', methods=['DELETE'])
@login_required
def delete_transaction():
    txn_id = parse_id(request.args.get('id'))
    deleted = Transaction.query.filter_by(id=txn_id, user_id=current_user().id).delete()
    if not deleted:
        db.session.rollback()
        raise NotFoundError('Transaction not found')
    db.session.commit()
    return jsonify({'message': 'Transaction deleted'})


@bp.route('/api/transactions/recurring')
@login_required
def list_recurring_transactions():
    txs = recurring.recurring_transactions(_user_transactions(current_user()))
    txs.sort(key=lambda tx: tx.next_date or tx.date)
    return jsonify([tx.to_dict() for tx in txs])


# ---------------------- Routes: Monthly Budgets ----------------------
@bp.route('/api/monthly-budgets', methods=['GET'])
@login_required
def get_monthly_budget():
    user = current_user()
    month = parse_str(request.args.get('month'), 'month')
    budget = budgets.reconcile_and_fetch(user.id, month)
    return jsonify(budget.to_dict() if budget else None)


@bp.route('/api/monthly-budgets/all', methods=['GET'])
@login_required
def list_monthly_budgets():
    return jsonify([b.to_dict() for b in budgets.list_monthly_budgets(current_user().id)])


@bp.route('/api/monthly-budgets', methods=['POST'])
@login_required
def create_monthly_budget():
    data = json_body()
    budget = budgets.create_monthly_budget(
        current_user().id, data.get('month'), data.get('plannedIncome'), data.get('plannedExpenses'),
    )
    return jsonify(budget.to_dict()), 201


@bp.route('/api/monthly-budgets', methods=['DELETE'])
@login_required
def delete_monthly_budget():
    budgets.delete_monthly_budget(current_user().id, parse_id(request.args.get('id')))
    return jsonify({'message': 'Budget deleted'})


# ---------------------- Routes: Category Budgets ----------------------
@bp.route('/api/budgets', methods=['GET'])
@login_required
def list_category_budgets():
    user = current_user()
    txs = _user_transactions(user)
    return jsonify([budgets.category_budget_status(b, txs) for b in budgets.list_category_budgets(user.id)])


@bp.route('/api/budgets', methods=['POST'])
@login_required
def create_category_budget():
    budget = budgets.create_category_budget(current_user().id, json_body())
    return jsonify(budget.to_dict()), 201


@bp.route('/api/budgets', methods=['DELETE'])
@login_required
def delete_category_budget():
    budgets.delete_category_budget(current_user().id, parse_id(request.args.get('id')))
    return jsonify({'message': 'Budget deleted'})


# ---------------------- Routes: Goals ----------------------
@bp.route('/api/goals', methods=['GET'])
@login_required
def list_goals():
    user = current_user()
    balance = goals.available_balance(_user_transactions(user))
    now = datetime.now()
    user_goals = Goal.query.filter_by(user_id=user.id).order_by(Goal.created_at.desc(), Goal.id.desc()).all()
    return jsonify([goals.goal_progress(g, balance, now) for g in user_goals])


@bp.route('/api/goals', methods=['POST'])
@login_required
def create_goal():
    goal = goals.create_goal(current_user().id, json_body())
    return jsonify(goal.to_dict()), 201


@bp.route('/api/goals', methods=['PATCH'])
@login_required
def add_goal_funds():
    data = json_body()
    require(data, 'id')
    goal = goals.add_funds(current_user().id, parse_id(data['id']), data.get('amount'))
    return jsonify(goal.to_dict())


@bp.route('/api/goals', methods=['DELETE'])
@login_required
def delete_goal():
    goals.delete_goal(current_user().id, parse_id(request.args.get('id')))
    return jsonify({'message': 'Goal deleted'})


# ---------------------- Routes: Subscriptions ----------------------
@bp.route('/api/subscriptions', methods=['GET'])
@login_required
def list_subscriptions():
    subs = Subscription.query.filter_by(user_id=current_user().id).order_by(Subscription.next_billing_date.asc()).all()
    return jsonify({
        'subscriptions': [s.to_dict() for s in subs],
        'monthlyTotal': float(recurring.monthly_total(subs)),
    })


@bp.route('/api/subscriptions', methods=['POST'])
@login_required
def create_subscription():
    data = json_body()
    require(data, 'name', 'amount', 'billingCycle', 'nextBillingDate', 'category')
    sub = Subscription(
        user_id=current_user().id,
        name=parse_str(data['name'], 'name'),
        amount=parse_amount(data['amount']),
        billing_cycle=recurring.normalize_cycle(data['billingCycle']),
        next_billing_date=parse_datetime(data['nextBillingDate'], 'nextBillingDate'),
        category=parse_str(data['category'], 'category'),
        active=parse_bool(data.get('active'), 'active', default=True),
    )
    db.session.add(sub)
    db.session.commit()
    return jsonify(sub.to_dict()), 201


@bp.route('/api/subscriptions', methods=['DELETE'])
@login_required
def delete_subscription():
    sub_id = parse_id(request.args.get('id'))
    deleted = Subscription.query.filter_by(id=sub_id, user_id=current_user().id).delete()
    if not deleted:
        db.session.rollback()
        raise NotFoundError('Subscription not found')
    db.session.commit()
    return jsonify({'message': 'Subscription deleted successfully'})


# ---------------------- Routes: Bank Accounts ----------------------
@bp.route('/api/accounts', methods=['GET'])
@login_required
def list_accounts():
    accounts = BankAccount.query.filter_by(user_id=current_user().id).order_by(
        BankAccount.created_at.desc(), BankAccount.id.desc()).all()
    return jsonify([a.to_dict() for a in accounts])


@bp.route('/api/accounts', methods=['POST'])
@login_required
def create_account():
    data = json_body()
    require(data, 'bankName', 'accountType')
    if data.get('balance') is None:
        raise ValidationError('Missing required field: balance', field='balance')
    balance = parse_amount(data['balance'], 'balance', signed=True)
    number = data.get('accountNumber')
    if isinstance(number, int) and not isinstance(number, bool):
        number = str(number)
    digits = ''.join(ch for ch in parse_str(number, 'accountNumber', required=False) if ch.isdigit())
    account = BankAccount(
        user_id=current_user().id,
        bank_name=parse_str(data['bankName'], 'bankName'),
        account_type=parse_str(data['accountType'], 'accountType'),
        balance=balance,
        account_number=digits[-4:] or None,
        color=parse_str(data.get('color'), 'color', required=False) or 'bg-blue-500',
    )
    db.session.add(account)
    db.session.commit()
    return jsonify(account.to_dict()), 201


@bp.route('/api/accounts', methods=['DELETE'])
@login_required
def delete_account():
    account_id = parse_id(request.args.get('id'))
    deleted = BankAccount.query.filter_by(id=account_id, user_id=current_user().id).delete()
    if not deleted:
        db.session.rollback()
        raise NotFoundError('Account not found')
    db.session.commit()
    return jsonify({'message': 'Account deleted successfully'})


# ---------------------- API Endpoints: Reports ----------------------
@bp.route('/api/summary')
@login_required
def api_summary():
    return jsonify(ledger.summarize(_filtered_transactions(current_user())).to_dict())


@bp.route('/api/category_breakdown')
@login_required
def api_category_breakdown():
    txs = _filtered_transactions(current_user())
    shares = ledger.category_breakdown(txs, category=request.args.get('category') or None)
    return jsonify([s.to_dict() for s in shares])


@bp.route('/api/monthly_trend')
@login_required
def api_monthly_trend():
    months = request.args.get('months', current_app.config['TREND_MONTHS'])
    try:
        months = int(months)
    except (TypeError, ValueError):
        raise ValidationError('months must be a whole number', field='months')
    if not 1 <= months <= MAX_TREND_MONTHS:
        raise ValidationError(f'months must be between 1 and {MAX_TREND_MONTHS}', field='months')
    buckets = ledger.monthly_trend(_user_transactions(current_user()), months=months)
    return jsonify([b.to_dict() for b in buckets])


@bp.route('/api/reports')
@login_required
def api_reports():
    """Everything the reports page shows for one period."""
    user = current_user()
    period = request.args.get('period', 'monthly')
    start = parse_datetime(request.args.get('start'), 'start') if request.args.get('start') else None
    end = parse_datetime(request.args.get('end'), 'end') if request.args.get('end') else None
    window_start, window_end = ledger.period_window(period, datetime.now(), start, end)

    txs = _user_transactions(user)
    in_period = ledger.filter_transactions(txs, start=window_start, end=window_end)
    return jsonify({
        'period': period,
        'start': window_start.isoformat(),
        'end': window_end.isoformat(),
        'summary': ledger.summarize(in_period).to_dict(),
        'categoryBreakdown': [s.to_dict() for s in ledger.category_breakdown(in_period)],
        'monthlyTrend': [b.to_dict() for b in ledger.monthly_trend(txs, months=current_app.config['TREND_MONTHS'])],
        'categoryTrends': category_trends(txs),
        'insights': generate_insights(txs),
        'nextMonthExpensePrediction': predict_next_month_expense(txs),
    })


# ---------------------- Export CSV ----------------------
@bp.route('/export.csv')
@login_required
def export_csv():
    user = current_user()
    transactions = Transaction.query.filter_by(user_id=user.id).order_by(Transaction.date.desc()).all()
    si = io.StringIO()
    writer = csv.writer(si)
    writer.writerow(['date', 'amount', 'type', 'category', 'description'])
    for t in transactions:
        writer.writerow([t.date.date().isoformat(), f'{t.amount:.2f}', t.ttype, t.category, t.description or ''])
    output = si.getvalue().encode('utf-8')
    return (output, 200, {'Content-Type': 'text/csv; charset=utf-8', 'Content-Disposition': 'attachment; filename=transactions.csv'})


# ---------------------- Payment Webhook ----------------------
@bp.route('/api/stripe/webhook', methods=['POST'])
def stripe_webhook():
    secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
    if not secret:
        raise DependencyError('Webhook handler failed')
    payload = request.get_data()
    billing.verify_signature(payload, request.headers.get('Stripe-Signature'), secret)
    event = request.get_json(silent=True)
    if not isinstance(event, dict):
        raise ValidationError('Malformed event payload')
    applied = billing.apply_event(event)
    return jsonify({'received': True, 'duplicate': not applied})


# ---------------------- CLI ----------------------
def register_commands(app):
    @app.cli.command('init-db')
    def init_db():
        db.create_all()
        click.echo('Database initialized.')

    @app.cli.command('list-users')
    def list_users():
        for user in User.query.order_by(User.id).all():
            status = 'verified' if user.email_verified else 'unverified'
            click.echo(f'{user.id}\t{user.email}\t{user.plan}\t{status}')

    @app.cli.command('verify-user')
    @click.argument('email')
    def verify_user(email):
        user = User.query.filter_by(email=email.lower().strip()).first()
        if not user:
            raise click.ClickException(f'No user with email {email}')
        user.email_verified = True
        user.verification_token = None
        db.session.commit()
        click.echo(f'{user.email} marked as verified.')


# ---------------------- Run App ----------------------
if __name__ == '__main__':
    create_app().run(host='0.0.0.0', port=int(os.environ.get('PORT', 5000)), debug=True)
