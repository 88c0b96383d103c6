from datetime import datetime

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

PLANS = ('FREE', 'PRO', 'BUSINESS')


def money(value):
    return round(float(value or 0), 2)


def iso(value):
    return value.isoformat() if value else None


class User(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    plan = db.Column(db.String(20), nullable=False, default='FREE')
    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    verification_token = db.Column(db.String(64), nullable=True, index=True)
    reset_token = db.Column(db.String(64), nullable=True, index=True)
    reset_token_expiry = db.Column(db.DateTime, nullable=True)
    # preferences
    account_type = db.Column(db.String(20), nullable=False, default='personal')
    currency = db.Column(db.String(10), nullable=False, default='EUR')
    language = db.Column(db.String(10), nullable=False, default='en')
    theme = db.Column(db.String(20), nullable=False, default='light')
    date_format = db.Column(db.String(20), nullable=False, default='DD/MM/YYYY')
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    transactions = db.relationship('Transaction', backref='user', lazy=True, cascade="all, delete-orphan")
    monthly_budgets = db.relationship('MonthlyBudget', backref='user', lazy=True, cascade="all, delete-orphan")
    category_budgets = db.relationship('CategoryBudget', backref='user', lazy=True, cascade="all, delete-orphan")
    goals = db.relationship('Goal', backref='user', lazy=True, cascade="all, delete-orphan")
    subscriptions = db.relationship('Subscription', backref='user', lazy=True, cascade="all, delete-orphan")
    accounts = db.relationship('BankAccount', backref='user', lazy=True, cascade="all, delete-orphan")

    def preferences(self):
        return {
            'accountType': self.account_type,
            'theme': self.theme,
            'language': self.language,
            'currency': self.currency,
            'dateFormat': self.date_format,
        }

    def to_dict(self):
        """Profile without password or tokens."""
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'plan': self.plan,
            'emailVerified': self.email_verified,
            'createdAt': iso(self.created_at),
            **self.preferences(),
        }


class Transaction(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    date = db.Column(db.DateTime, nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)  # always positive
    ttype = db.Column(db.String(20), nullable=False)  # 'income' or 'expense'
    category = db.Column(db.String(100), nullable=False, default='Other')
    description = db.Column(db.Text, nullable=True)
    is_recurring = db.Column(db.Boolean, nullable=False, default=False)
    frequency = db.Column(db.String(20), nullable=True)
    next_date = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'date': iso(self.date),
            'amount': money(self.amount),
            'type': self.ttype,
            'category': self.category,
            'description': self.description or '',
            'isRecurring': self.is_recurring,
            'frequency': self.frequency,
            'nextDate': iso(self.next_date),
        }


class MonthlyBudget(db.Model):
    __table_args__ = (db.UniqueConstraint('user_id', 'month', name='uq_monthly_budget_user_month'),)

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    month = db.Column(db.String(7), nullable=False)  # YYYY-MM
    planned_income = db.Column(db.Numeric(12, 2), nullable=False)
    planned_expenses = db.Column(db.Numeric(12, 2), nullable=False)
    actual_income = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    actual_expenses = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'month': self.month,
            'plannedIncome': money(self.planned_income),
            'plannedExpenses': money(self.planned_expenses),
            'actualIncome': money(self.actual_income),
            'actualExpenses': money(self.actual_expenses),
            'updatedAt': iso(self.updated_at),
        }


class CategoryBudget(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    category = db.Column(db.String(100), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    period = db.Column(db.String(20), nullable=False, default='MONTHLY')
    start_date = db.Column(db.DateTime, nullable=False, default=datetime.now)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'category': self.category,
            'amount': money(self.amount),
            'period': self.period,
            'startDate': iso(self.start_date),
        }


class Goal(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    target_amount = db.Column(db.Numeric(12, 2), nullable=False)
    current_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    deadline = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'targetAmount': money(self.target_amount),
            'currentAmount': money(self.current_amount),
            'deadline': iso(self.deadline),
            'createdAt': iso(self.created_at),
        }


class Subscription(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    billing_cycle = db.Column(db.String(20), nullable=False)  # WEEKLY, MONTHLY or YEARLY
    next_billing_date = db.Column(db.DateTime, nullable=False)
    category = db.Column(db.String(100), nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'amount': money(self.amount),
            'billingCycle': self.billing_cycle,
            'nextBillingDate': iso(self.next_billing_date),
            'category': self.category,
            'active': self.active,
        }


class BankAccount(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    bank_name = db.Column(db.String(120), nullable=False)
    account_type = db.Column(db.String(50), nullable=False)
    balance = db.Column(db.Numeric(12, 2), nullable=False)  # user-entered, not reconciled
    account_number = db.Column(db.String(4), nullable=True)  # last 4 digits only
    color = db.Column(db.String(30), nullable=False, default='bg-blue-500')
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)

    def to_dict(self):
        return {
            'id': self.id,
            'bankName': self.bank_name,
            'accountType': self.account_type,
            'balance': money(self.balance),
            'accountNumber': self.account_number,
            'color': self.color,
            'createdAt': iso(self.created_at),
        }


class ProcessedEvent(db.Model):
    """Payment webhook events already applied, keyed by the processor's event id."""
    id = db.Column(db.String(255), primary_key=True)
    event_type = db.Column(db.String(100), nullable=False)
    processed_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
