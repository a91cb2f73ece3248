"""
User model with denormalized subscription state.
The subscription fields mirror Stripe and are written by the billing service.
"""
import enum
from datetime import datetime, timedelta

from flask import current_app

from therapydesk.extensions import db


class SubscriptionStatus(str, enum.Enum):
    """Local subscription lifecycle states."""
    TRIALING = 'trialing'
    ACTIVE = 'active'
    PAST_DUE = 'past_due'
    CANCELLED = 'cancelled'
    INACTIVE = 'inactive'


class SubscriptionPeriod(str, enum.Enum):
    """Billing interval of the current subscription."""
    MONTHLY = 'monthly'
    ANNUAL = 'annual'


class User(db.Model):
    """Therapist account owning clients, sessions and notes."""

    __tablename__ = 'users'

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(200), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    # Subscription state
    subscription_status = db.Column(
        db.Enum(SubscriptionStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=SubscriptionStatus.TRIALING,
    )
    subscription_period = db.Column(
        db.Enum(SubscriptionPeriod, values_callable=lambda x: [e.value for e in x]),
        nullable=True,
    )

    # Stripe IDs
    stripe_customer_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=True, index=True,
    )

    # Trial and billing period
    trial_start_date = db.Column(db.DateTime, nullable=True)
    subscription_start_date = db.Column(db.DateTime, nullable=True)
    subscription_end_date = db.Column(db.DateTime, nullable=True)

    # Timestamps
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=True, onupdate=datetime.utcnow)

    # Relationships
    clients = db.relationship(
        'Client', backref='owner', lazy='dynamic', cascade='all, delete-orphan',
    )
    sessions = db.relationship(
        'Session', backref='owner', lazy='dynamic', cascade='all, delete-orphan',
    )
    notes = db.relationship(
        'TherapyNote', backref='owner', lazy='dynamic', cascade='all, delete-orphan',
    )

    def __repr__(self):
        return f'<User {self.email} status={self.subscription_status.value}>'

    @property
    def trial_end_date(self):
        """End of the free trial window. None if no trial was started."""
        if not self.trial_start_date:
            return None
        return self.trial_start_date + timedelta(days=current_app.config['TRIAL_DAYS'])

    @property
    def trial_days_left(self):
        """Days remaining in trial, 0 once expired. None outside of a trial."""
        if self.subscription_status != SubscriptionStatus.TRIALING or not self.trial_end_date:
            return None
        delta = self.trial_end_date - datetime.utcnow()
        return max(0, delta.days)

    @property
    def is_trial_expired(self):
        end = self.trial_end_date
        return end is not None and end <= datetime.utcnow()

    @property
    def has_access(self):
        """Check if the user may use the practice features."""
        if self.subscription_status == SubscriptionStatus.ACTIVE:
            return True
        # Past due is still considered active (grace period)
        if self.subscription_status == SubscriptionStatus.PAST_DUE:
            return True
        if self.subscription_status == SubscriptionStatus.TRIALING:
            return not self.is_trial_expired
        return False
