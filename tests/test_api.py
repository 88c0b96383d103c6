import json

from models import db, Goal, Transaction, User


def test_requires_login(client):
    for path in ('/api/transactions', '/api/goals', '/api/subscriptions', '/api/accounts', '/api/monthly-budgets?month=2024-01'):
        resp = client.get(path)
        assert resp.status_code == 401
        assert resp.get_json() == {'error': 'Unauthorized'}


def test_register_validation_and_duplicates(client):
    assert client.post('/api/register', json={'email': 'x@example.com'}).status_code == 400
    assert client.post('/api/register', json={'email': 'x@example.com', 'password': 'pw', 'plan': 'GOLD'}).status_code == 400
    resp = client.post('/api/register', json={'email': 'X@Example.com', 'password': 'pw'})
    assert resp.status_code == 201
    assert resp.get_json()['user']['name'] == 'x'
    assert client.post('/api/register', json={'email': 'x@example.com', 'password': 'pw'}).status_code == 409


def test_bad_login(client):
    client.post('/api/register', json={'email': 'a@example.com', 'password': 'right'})
    assert client.post('/api/login', json={'email': 'a@example.com', 'password': 'wrong'}).status_code == 401


def test_verification_email_flow(app, client):
    client.post('/api/register', json={'email': 'v@example.com', 'password': 'pw'})
    outbox = app.extensions['mailer'].outbox
    assert outbox[-1]['to'] == 'v@example.com'
    with app.app_context():
        token = User.query.filter_by(email='v@example.com').first().verification_token
    assert token in outbox[-1]['html']
    assert client.post('/api/auth/verify-email', json={'token': token}).status_code == 200
    assert client.post('/api/auth/verify-email', json={'token': token}).status_code == 400
    with app.app_context():
        user = User.query.filter_by(email='v@example.com').first()
        assert user.email_verified and user.verification_token is None


def test_password_reset_flow(app, client):
    client.post('/api/register', json={'email': 'r@example.com', 'password': 'old'})
    assert client.post('/api/auth/forgot-password', json={'email': 'nobody@example.com'}).status_code == 200
    assert client.post('/api/auth/forgot-password', json={'email': 'r@example.com'}).status_code == 200
    with app.app_context():
        token = User.query.filter_by(email='r@example.com').first().reset_token
    assert client.post('/api/auth/reset-password', json={'token': token, 'password': 'new'}).status_code == 200
    assert client.post('/api/auth/reset-password', json={'token': token, 'password': 'again'}).status_code == 400
    assert client.post('/api/login', json={'email': 'r@example.com', 'password': 'new'}).status_code == 200


def test_transaction_crud(user_client, other_client):
    assert user_client.post('/api/transactions', json={'type': 'income'}).status_code == 400
    assert user_client.post('/api/transactions', json={'amount': 5}).status_code == 400
    assert user_client.post('/api/transactions', json={'amount': 'abc', 'type': 'income'}).status_code == 400
    assert user_client.post('/api/transactions', json={'amount': -5, 'type': 'income'}).status_code == 400
    assert user_client.post('/api/transactions', json={'amount': 5, 'type': 'refund'}).status_code == 400

    resp = user_client.post('/api/transactions', json={
        'amount': '42.50', 'type': 'EXPENSE', 'category': 'Pet care', 'description': 'vet', 'date': '2024-02-10',
    })
    assert resp.status_code == 201
    created = resp.get_json()
    assert created['type'] == 'expense'
    assert created['amount'] == 42.5
    assert created['category'] == 'Pet care'

    user_client.post('/api/transactions', json={'amount': 1, 'type': 'income', 'date': '2024-03-10'})
    listed = user_client.get('/api/transactions').get_json()
    assert [t['date'][:10] for t in listed] == ['2024-03-10', '2024-02-10']
    assert user_client.get('/api/transactions?year=2024&month=2').get_json()[0]['id'] == created['id']
    assert other_client.get('/api/transactions').get_json() == []

    assert other_client.delete(f'/api/transactions?id={created["id"]}').status_code == 404
    assert user_client.delete(f'/api/transactions?id={created["id"]}').status_code == 200
    assert len(user_client.get('/api/transactions').get_json()) == 1


def test_recurring_transaction_gets_next_date(user_client):
    resp = user_client.post('/api/transactions', json={
        'amount': 15, 'type': 'expense', 'category': 'Entertainment',
        'date': '2024-01-31', 'isRecurring': True, 'frequency': 'monthly',
    })
    body = resp.get_json()
    assert body['isRecurring'] is True
    assert body['frequency'] == 'MONTHLY'
    assert body['nextDate'].startswith('2024-02-29')
    assert len(user_client.get('/api/transactions/recurring').get_json()) == 1


def test_subscriptions_monthly_total(user_client):
    for name, amount, cycle in (('Cloud', '120.00', 'YEARLY'), ('Gym', '10.00', 'weekly')):
        resp = user_client.post('/api/subscriptions', json={
            'name': name, 'amount': amount, 'billingCycle': cycle,
            'nextBillingDate': '2024-06-01', 'category': 'Bills & Utilities',
        })
        assert resp.status_code == 201
    body = user_client.get('/api/subscriptions').get_json()
    assert body['monthlyTotal'] == 50.00
    assert {s['billingCycle'] for s in body['subscriptions']} == {'YEARLY', 'WEEKLY'}


def test_subscription_requires_fields_and_ownership(user_client, other_client):
    assert user_client.post('/api/subscriptions', json={'name': 'x', 'amount': 1}).status_code == 400
    sub = user_client.post('/api/subscriptions', json={
        'name': 'Music', 'amount': 9.99, 'billingCycle': 'MONTHLY',
        'nextBillingDate': '2024-06-01', 'category': 'Entertainment',
    }).get_json()
    resp = other_client.delete(f'/api/subscriptions?id={sub["id"]}')
    assert resp.status_code == 404
    assert user_client.delete('/api/subscriptions').status_code == 400
    assert user_client.delete(f'/api/subscriptions?id={sub["id"]}').get_json() == {'message': 'Subscription deleted successfully'}


def test_bank_accounts(user_client, other_client):
    assert user_client.post('/api/accounts', json={'bankName': 'Alpha', 'accountType': 'checking'}).status_code == 400
    resp = user_client.post('/api/accounts', json={
        'bankName': 'Alpha', 'accountType': 'credit', 'balance': '-120.40', 'accountNumber': '1234 5678 9012',
    })
    assert resp.status_code == 201
    account = resp.get_json()
    assert account['accountNumber'] == '9012'
    assert account['balance'] == -120.4
    assert account['color'] == 'bg-blue-500'
    assert other_client.delete(f'/api/accounts?id={account["id"]}').status_code == 404
    assert user_client.delete(f'/api/accounts?id={account["id"]}').status_code == 200


def test_preferences(user_client):
    resp = user_client.put('/api/user/preferences', json={'theme': 'dark', 'currency': 'USD', 'language': ''})
    prefs = resp.get_json()['preferences']
    assert prefs['theme'] == 'dark'
    assert prefs['currency'] == 'USD'
    assert prefs['language'] == 'en'
    assert user_client.get('/api/user/preferences').get_json()['theme'] == 'dark'


def test_export_data_hides_secrets(user_client):
    user_client.post('/api/transactions', json={'amount': 1, 'type': 'income'})
    body = user_client.get('/api/user/export-data').get_json()
    assert body['summary'] == {'totalTransactions': 1, 'totalGoals': 0}
    assert 'password_hash' not in body['user']
    assert 'verificationToken' not in body['user']


def test_export_csv(user_client):
    user_client.post('/api/transactions', json={'amount': '3.5', 'type': 'expense', 'category': 'Other', 'date': '2024-01-02'})
    resp = user_client.get('/export.csv')
    assert resp.headers['Content-Type'].startswith('text/csv')
    lines = resp.data.decode().splitlines()
    assert lines[0] == 'date,amount,type,category,description'
    assert lines[1].startswith('2024-01-02,3.50,expense,Other')


def test_summary_and_breakdown(user_client):
    user_client.post('/api/transactions', json={'amount': 1000, 'type': 'income', 'date': '2024-03-01'})
    user_client.post('/api/transactions', json={'amount': 300, 'type': 'expense', 'category': 'Shopping', 'date': '2024-03-02'})
    user_client.post('/api/transactions', json={'amount': 100, 'type': 'expense', 'category': 'Healthcare', 'date': '2024-03-03'})
    summary = user_client.get('/api/summary?year=2024&month=3').get_json()
    assert summary['income'] == 1000 and summary['expense'] == 400 and summary['balance'] == 600
    assert summary['savingsRate'] == 60
    breakdown = user_client.get('/api/category_breakdown?year=2024').get_json()
    assert breakdown[0] == {'category': 'Shopping', 'amount': 300, 'percent': 75}
    assert user_client.get('/api/summary?year=2023').get_json()['income'] == 0


def test_reports(user_client):
    user_client.post('/api/transactions', json={'amount': 1000, 'type': 'income'})
    user_client.post('/api/transactions', json={'amount': 200, 'type': 'expense', 'category': 'Shopping'})
    body = user_client.get('/api/reports?period=monthly').get_json()
    assert body['summary']['balance'] == 800
    assert len(body['monthlyTrend']) == 6
    assert body['categoryBreakdown'][0]['category'] == 'Shopping'
    assert body['nextMonthExpensePrediction'] == 200
    assert any('savings rate' in line for line in body['insights'])
    assert user_client.get('/api/reports?period=custom').status_code == 400


def _webhook(client, sign, event, secret='whsec_test'):
    payload = json.dumps(event).encode()
    header = sign(payload, secret)
    return client.post('/api/stripe/webhook', data=payload, headers={'Stripe-Signature': header},
                       content_type='application/json')


def test_webhook_upgrades_plan_once(app, client, sign_webhook):
    client.post('/api/register', json={'email': 'pay@example.com', 'password': 'pw'})
    with app.app_context():
        user_id = User.query.filter_by(email='pay@example.com').first().id
    event = {
        'id': 'evt_1', 'type': 'checkout.session.completed',
        'data': {'object': {'metadata': {'userId': str(user_id), 'plan': 'PRO'}}},
    }
    first = _webhook(client, sign_webhook, event)
    assert first.get_json() == {'received': True, 'duplicate': False}
    with app.app_context():
        assert db.session.get(User, user_id).plan == 'PRO'
        db.session.get(User, user_id).plan = 'FREE'
        db.session.commit()
    replay = _webhook(client, sign_webhook, event)
    assert replay.get_json()['duplicate'] is True
    with app.app_context():
        assert db.session.get(User, user_id).plan == 'FREE'


def test_webhook_rejects_bad_signature(client, sign_webhook):
    event = {'id': 'evt_2', 'type': 'checkout.session.completed'}
    assert _webhook(client, sign_webhook, event, secret='wrong').status_code == 400
    resp = client.post('/api/stripe/webhook', json=event)
    assert resp.status_code == 400
    assert resp.get_json() == {'error': 'No signature'}


def test_non_string_fields_are_rejected(client, user_client):
    resp = client.post('/api/register', json={'email': 42, 'password': 'pw'})
    assert resp.status_code == 400
    assert resp.get_json()['field'] == 'email'
    assert client.post('/api/auth/forgot-password', json={'email': ['a@example.com']}).status_code == 400
    resp = user_client.post('/api/subscriptions', json={
        'name': 123, 'amount': 5, 'billingCycle': 'MONTHLY',
        'nextBillingDate': '2024-06-01', 'category': 'Entertainment',
    })
    assert resp.status_code == 400
    assert resp.get_json() == {'error': 'name must be a string', 'field': 'name'}
    resp = user_client.post('/api/accounts', json={'bankName': True, 'accountType': 'checking', 'balance': 0})
    assert resp.status_code == 400
    assert resp.get_json()['field'] == 'bankName'


def test_subscription_active_flag(user_client):
    body = {
        'name': 'Paused', 'amount': 30, 'billingCycle': 'MONTHLY',
        'nextBillingDate': '2024-06-01', 'category': 'Entertainment', 'active': 'false',
    }
    sub = user_client.post('/api/subscriptions', json=body).get_json()
    assert sub['active'] is False
    assert user_client.get('/api/subscriptions').get_json()['monthlyTotal'] == 0
    resp = user_client.post('/api/subscriptions', json={**body, 'active': 'sometimes'})
    assert resp.status_code == 400
    assert resp.get_json()['field'] == 'active'


def test_monthly_trend_bounds(user_client):
    assert len(user_client.get('/api/monthly_trend').get_json()) == 6
    assert len(user_client.get('/api/monthly_trend?months=12').get_json()) == 12
    for months in ('0', '-3', '121', '100000000', 'lots'):
        resp = user_client.get(f'/api/monthly_trend?months={months}')
        assert resp.status_code == 400
        assert resp.get_json()['field'] == 'months'


def test_change_password(user_client):
    resp = user_client.post('/api/auth/change-password', json={'currentPassword': 'wrong-pass', 'newPassword': 'longer-pass'})
    assert resp.status_code == 400
    assert resp.get_json()['field'] == 'currentPassword'
    resp = user_client.post('/api/auth/change-password', json={'currentPassword': 's3cret-pass', 'newPassword': 'short'})
    assert resp.status_code == 400
    assert resp.get_json()['field'] == 'newPassword'
    resp = user_client.post('/api/auth/change-password', json={'currentPassword': 's3cret-pass', 'newPassword': 'longer-pass'})
    assert resp.status_code == 200
    user_client.post('/api/logout')
    assert user_client.post('/api/login', json={'email': 'ada@example.com', 'password': 's3cret-pass'}).status_code == 401
    assert user_client.post('/api/login', json={'email': 'ada@example.com', 'password': 'longer-pass'}).status_code == 200


def test_change_password_requires_login(client):
    resp = client.post('/api/auth/change-password', json={'currentPassword': 'a', 'newPassword': 'longer-pass'})
    assert resp.status_code == 401


def test_delete_account(app, user_client, other_client):
    user_client.post('/api/transactions', json={'amount': 5, 'type': 'income'})
    user_client.post('/api/goals', json={'name': 'Trip', 'targetAmount': 500})
    other_client.post('/api/transactions', json={'amount': 7, 'type': 'income'})
    resp = user_client.delete('/api/user/delete-account')
    assert resp.status_code == 200
    assert user_client.get('/api/transactions').status_code == 401
    assert user_client.post('/api/login', json={'email': 'ada@example.com', 'password': 's3cret-pass'}).status_code == 401
    with app.app_context():
        assert User.query.filter_by(email='ada@example.com').first() is None
        assert Transaction.query.count() == 1
        assert Goal.query.count() == 0
    assert len(other_client.get('/api/transactions').get_json()) == 1
