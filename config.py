import os

from dotenv import load_dotenv

load_dotenv()


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-me')
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL', 'sqlite:///finance.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    APP_BASE_URL = os.environ.get('APP_BASE_URL', 'http://localhost:5000')
    MAIL_FROM = os.environ.get('MAIL_FROM', 'WealthFlow <onboarding@resend.dev>')
    RESEND_API_KEY = os.environ.get('RESEND_API_KEY')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET')

    # trailing months shown in trend charts
    TREND_MONTHS = int(os.environ.get('TREND_MONTHS', 6))
    RESET_TOKEN_HOURS = 1


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = 'test-secret'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    RESEND_API_KEY = None
    STRIPE_WEBHOOK_SECRET = 'whsec_test'
