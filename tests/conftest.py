import hashlib
import hmac
import time

import pytest

from app import create_app
from config import TestingConfig


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


def stripe_signature(payload: bytes, secret: str, timestamp=None) -> str:
    """A ``Stripe-Signature`` header value, signed the way the processor signs deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f'{timestamp}.'.encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={digest}'


@pytest.fixture
def sign_webhook():
    return stripe_signature


def signup(app, email='ada@example.com', password='s3cret-pass'):
    """Register and log in a fresh user; returns a logged-in test client."""
    client = app.test_client()
    resp = client.post('/api/register', json={'email': email, 'password': password, 'name': 'Ada'})
    assert resp.status_code == 201, resp.get_json()
    resp = client.post('/api/login', json={'email': email, 'password': password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def user_client(app):
    return signup(app)


@pytest.fixture
def other_client(app):
    return signup(app, email='mallory@example.com')
