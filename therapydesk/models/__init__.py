"""Database models."""
from therapydesk.models.user import User, SubscriptionStatus, SubscriptionPeriod
from therapydesk.models.practice import Client, Session, SessionStatus, TherapyNote
from therapydesk.models.billing_event import BillingEvent

__all__ = [
    'User',
    'SubscriptionStatus',
    'SubscriptionPeriod',
    'Client',
    'Session',
    'SessionStatus',
    'TherapyNote',
    'BillingEvent',
]
