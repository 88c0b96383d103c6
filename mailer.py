import logging

import requests

logger = logging.getLogger(__name__)

RESEND_URL = 'https://api.resend.com/emails'


class LogMailer:
    """Writes outgoing mail to the log instead of delivering it."""

    def __init__(self):
        self.outbox = []

    def send(self, to, subject, html):
        self.outbox.append({'to': to, 'subject': subject, 'html': html})
        logger.info('Email to %s: %s', to, subject)


class ResendMailer:
    def __init__(self, api_key, sender, timeout=10):
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout

    def send(self, to, subject, html):
        headers = {'Authorization': f'Bearer {self.api_key}'}
        payload = {'from': self.sender, 'to': to, 'subject': subject, 'html': html}
        response = requests.post(RESEND_URL, headers=headers, json=payload, timeout=self.timeout)
        response.raise_for_status()


def build_mailer(config):
    if config.get('RESEND_API_KEY'):
        return ResendMailer(config['RESEND_API_KEY'], config['MAIL_FROM'])
    return LogMailer()


def _deliver(mailer, to, subject, html):
    # delivery problems never fail the request that triggered them
    try:
        mailer.send(to, subject, html)
    except requests.RequestException:
        logger.exception('Failed to send "%s" to %s', subject, to)


def send_verification_email(mailer, base_url, email, token):
    url = f'{base_url}/auth/verify-email?token={token}'
    html = (
        '<h1>WealthFlow</h1>'
        '<p>Thanks for signing up! Please confirm your email address.</p>'
        f'<p><a href="{url}">Verify Email Address</a></p>'
    )
    _deliver(mailer, email, 'Verify your WealthFlow account', html)


def send_password_reset_email(mailer, base_url, email, token):
    url = f'{base_url}/auth/reset-password?token={token}'
    html = (
        '<h1>WealthFlow</h1>'
        '<p>We received a request to reset your password. The link expires in one hour.</p>'
        f'<p><a href="{url}">Reset Password</a></p>'
    )
    _deliver(mailer, email, 'Reset your WealthFlow password', html)
