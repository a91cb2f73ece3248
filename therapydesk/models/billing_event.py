"""
Processed Stripe webhook events.
One row per provider event id, written in the same transaction as the
subscription update it caused.
"""
from datetime import datetime

from therapydesk.extensions import db


class BillingEvent(db.Model):
    """Stripe event that has already been applied."""

    __tablename__ = 'billing_events'

    id = db.Column(db.Integer, primary_key=True)
    stripe_event_id = db.Column(db.String(255), unique=True, nullable=False, index=True)
    event_type = db.Column(db.String(100), nullable=False)
    # Provider-side creation time (informational, not used for ordering)
    provider_created_at = db.Column(db.DateTime, nullable=True)
    processed_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f'<BillingEvent {self.stripe_event_id} {self.event_type}>'

    @classmethod
    def is_processed(cls, stripe_event_id):
        return cls.query.filter_by(stripe_event_id=stripe_event_id).first() is not None
