# =============================================================================
# TherapyDesk - Pytest Fixtures Configuration
# =============================================================================

import hashlib
import hmac
import json
import time
from datetime import datetime, timedelta

import pytest

from therapydesk import create_app
from therapydesk.decorators.auth import create_access_token
from therapydesk.extensions import db
from therapydesk.models.user import User, SubscriptionStatus, SubscriptionPeriod


WEBHOOK_SECRET = 'whsec_test_fake_secret'


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture(scope='function')
def app():
    """Create and configure test application with SQLite in-memory database."""
    application = create_app('testing')

    with application.app_context():
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Test client for HTTP requests."""
    return app.test_client()


@pytest.fixture(scope='function')
def runner(app):
    """CLI test runner."""
    return app.test_cli_runner()


# =============================================================================
# User Fixtures
# =============================================================================

def _persist(user):
    db.session.add(user)
    db.session.commit()
    user_id = user.id
    db.session.expire_all()
    return db.session.get(User, user_id)


@pytest.fixture
def trialing_user(app):
    """Create a user in the middle of the free trial."""
    return _persist(User(
        email='trial@test.com',
        full_name='Trial Therapist',
        subscription_status=SubscriptionStatus.TRIALING,
        trial_start_date=datetime.utcnow() - timedelta(days=3),
    ))


@pytest.fixture
def subscribed_user(app):
    """Create a user with an active monthly Stripe subscription."""
    return _persist(User(
        email='subscribed@test.com',
        full_name='Subscribed Therapist',
        subscription_status=SubscriptionStatus.ACTIVE,
        subscription_period=SubscriptionPeriod.MONTHLY,
        stripe_customer_id='cus_existing',
        stripe_subscription_id='sub_existing',
        trial_start_date=datetime.utcnow() - timedelta(days=40),
        subscription_start_date=datetime.utcnow() - timedelta(days=10),
        subscription_end_date=datetime.utcnow() + timedelta(days=20),
    ))


@pytest.fixture
def auth_headers(app):
    """Build Authorization headers for a given user."""
    def _headers(user):
        return {'Authorization': f'Bearer {create_access_token(user.id)}'}
    return _headers


# =============================================================================
# Stripe Webhook Helpers
# =============================================================================

def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for a raw payload."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f'{timestamp}.'.encode('utf-8') + payload
    signature = hmac.new(secret.encode('utf-8'), signed, hashlib.sha256).hexdigest()
    return f't={timestamp},v1={signature}'


def make_event(event_type, obj, event_id='evt_test_1', created=None):
    """Build a Stripe event envelope."""
    return {
        'id': event_id,
        'object': 'event',
        'type': event_type,
        'created': created or int(time.time()),
        'data': {'object': obj},
    }


@pytest.fixture
def post_webhook(client):
    """POST a correctly signed event to the webhook endpoint."""
    def _post(event, secret=WEBHOOK_SECRET):
        payload = json.dumps(event).encode('utf-8')
        return client.post(
            '/billing/webhook',
            data=payload,
            headers={'Stripe-Signature': sign_payload(payload, secret)},
            content_type='application/json',
        )
    return _post


@pytest.fixture
def stripe_subscription():
    """Stripe subscription resource as returned by Subscription.retrieve."""
    def _build(sub_id='sub_new', interval='month', status='active'):
        start = int(time.time())
        return {
            'id': sub_id,
            'object': 'subscription',
            'status': status,
            'current_period_start': start,
            'current_period_end': start + 30 * 24 * 3600,
            'items': {'data': [{'price': {'recurring': {'interval': interval}}}]},
        }
    return _build
