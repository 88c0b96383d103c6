"""Payment-processor webhooks: signature check and idempotent plan changes."""
import logging

import stripe
from sqlalchemy.exc import IntegrityError

from errors import ValidationError
from models import db, PLANS, ProcessedEvent, User

logger = logging.getLogger(__name__)

SIGNATURE_TOLERANCE = 300


def verify_signature(payload: bytes, header: str, secret: str, tolerance=SIGNATURE_TOLERANCE):
    """Check the ``Stripe-Signature`` header against the raw request body."""
    if not header:
        raise ValidationError('No signature')
    try:
        stripe.Webhook.construct_event(payload, header, secret, tolerance=tolerance)
    except (stripe.SignatureVerificationError, ValueError) as exc:
        logger.warning('Webhook signature rejected: %s', exc)
        raise ValidationError('Webhook signature verification failed')


def _set_plan(user_id, plan):
    try:
        user = db.session.get(User, int(user_id))
    except (TypeError, ValueError):
        user = None
    if user is None:
        logger.warning('Webhook references unknown user %s', user_id)
        return
    user.plan = plan
    logger.info('User %s moved to plan %s', user_id, plan)


def apply_event(event):
    """Apply a webhook event once. Returns False if the event id was seen before."""
    event_id = event.get('id')
    event_type = event.get('type', '')
    if not event_id:
        raise ValidationError('Event id missing', field='id')
    if db.session.get(ProcessedEvent, event_id) is not None:
        logger.info('Skipping replayed event %s', event_id)
        return False

    obj = (event.get('data') or {}).get('object') or {}
    metadata = obj.get('metadata') or {}
    user_id = metadata.get('userId')

    if event_type == 'checkout.session.completed':
        plan = str(metadata.get('plan') or '').upper()
        if user_id and plan in PLANS:
            _set_plan(user_id, plan)
    elif event_type == 'customer.subscription.deleted':
        if user_id:
            _set_plan(user_id, 'FREE')
        else:
            logger.info('Subscription canceled: %s', obj.get('id'))
    elif event_type == 'customer.subscription.updated':
        logger.info('Subscription updated: %s', obj.get('id'))
    else:
        logger.info('Unhandled event type: %s', event_type)

    db.session.add(ProcessedEvent(id=event_id, event_type=event_type))
    try:
        db.session.commit()
    except IntegrityError:
        # a concurrent delivery of the same event got there first
        db.session.rollback()
        return False
    return True
