"""
Subscription service for TherapyDesk billing.
Handles Stripe integration, webhook reconciliation, and the trial lifecycle.
"""
import json
from datetime import datetime, timezone
from typing import Optional

import stripe
from flask import current_app

from therapydesk.extensions import db
from therapydesk.models.billing_event import BillingEvent
from therapydesk.models.user import User, SubscriptionPeriod, SubscriptionStatus


class BillingError(Exception):
    """Base class for billing failures surfaced to API callers."""

    status = 500


class WebhookValidationError(BillingError):
    """Raised when an inbound webhook cannot be trusted."""

    def __init__(self, message: str, status: int = 400):
        self.status = status
        super().__init__(message)


class WebhookProcessingError(BillingError):
    """Raised when a verified event cannot be applied."""


class SubscriptionMismatch(BillingError):
    """Raised when a caller acts on a subscription they do not hold."""

    status = 403


# Stripe subscription.status -> local status
STRIPE_STATUS_MAP = {
    'active': SubscriptionStatus.ACTIVE,
    'trialing': SubscriptionStatus.TRIALING,
    'past_due': SubscriptionStatus.PAST_DUE,
    'unpaid': SubscriptionStatus.PAST_DUE,
    'canceled': SubscriptionStatus.CANCELLED,
    'incomplete': SubscriptionStatus.INACTIVE,
    'incomplete_expired': SubscriptionStatus.INACTIVE,
    'paused': SubscriptionStatus.INACTIVE,
}


def _as_dict(obj):
    """Plain mapping view of a Stripe API resource."""
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


def _from_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


class SubscriptionService:
    """Service for managing user subscriptions and Stripe billing."""

    # ------------------------------------------------------------------
    # Trial lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def start_trial(email: str, full_name: Optional[str] = None) -> User:
        """Ensure a user row exists for email, starting a trial if new.

        Args:
            email: Account email
            full_name: Optional display name

        Returns:
            Existing or newly created User
        """
        email = email.strip().lower()
        user = User.query.filter_by(email=email).first()
        if user:
            return user

        user = User(
            email=email,
            full_name=full_name,
            subscription_status=SubscriptionStatus.TRIALING,
            trial_start_date=datetime.utcnow(),
        )
        db.session.add(user)
        db.session.commit()
        current_app.logger.info(f'Trial started for {email}')
        return user

    @staticmethod
    def expire_trials(now: Optional[datetime] = None, dry_run: bool = False) -> int:
        """Move users with an elapsed trial and no subscription to inactive.

        Returns:
            Number of users expired (or that would be, with dry_run)
        """
        now = now or datetime.utcnow()
        candidates = User.query.filter(
            User.subscription_status == SubscriptionStatus.TRIALING,
            User.stripe_subscription_id.is_(None),
            User.trial_start_date.isnot(None),
        ).all()

        expired = [u for u in candidates if u.trial_end_date <= now]
        if dry_run:
            return len(expired)

        for user in expired:
            user.subscription_status = SubscriptionStatus.INACTIVE
        db.session.commit()

        if expired:
            current_app.logger.info(f'Expired {len(expired)} trial(s)')
        return len(expired)

    # ------------------------------------------------------------------
    # User-initiated billing actions
    # ------------------------------------------------------------------

    @staticmethod
    def get_or_create_stripe_customer(user: User) -> str:
        """Get or create a Stripe customer for the user.

        Args:
            user: User to get/create customer for

        Returns:
            Stripe customer ID
        """
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer = stripe.Customer.create(
            email=user.email,
            name=user.full_name,
            metadata={'user_id': str(user.id)},
        )

        user.stripe_customer_id = customer.id
        db.session.commit()
        current_app.logger.info(f'Stripe customer {customer.id} created for user {user.id}')

        return customer.id

    @staticmethod
    def create_checkout_session(
        user: User,
        price_id: str,
        success_url: Optional[str] = None,
        cancel_url: Optional[str] = None,
    ) -> str:
        """Create a Stripe Checkout Session for a subscription price.

        Args:
            user: Authenticated caller
            price_id: Stripe price to subscribe to
            success_url: Redirect after payment (defaults under APP_URL)
            cancel_url: Redirect on abandon (defaults under APP_URL)

        Returns:
            Checkout session ID for client-side redirect
        """
        customer_id = SubscriptionService.get_or_create_stripe_customer(user)
        app_url = current_app.config['APP_URL']

        session = stripe.checkout.Session.create(
            customer=customer_id,
            payment_method_types=['card'],
            line_items=[{
                'price': price_id,
                'quantity': 1,
            }],
            mode='subscription',
            success_url=success_url or f'{app_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}',
            cancel_url=cancel_url or f'{app_url}/dashboard/profile',
            metadata={'user_id': str(user.id)},
            allow_promotion_codes=True,
            billing_address_collection='required',
            customer_update={'address': 'auto'},
        )

        return session.id

    @staticmethod
    def cancel_subscription(user: User, subscription_id: str) -> Optional[int]:
        """Cancel the caller's subscription immediately at Stripe.

        Args:
            user: Authenticated caller
            subscription_id: Subscription the caller asks to cancel

        Returns:
            Provider cancellation timestamp (epoch seconds)

        Raises:
            SubscriptionMismatch: If the id is not the caller's subscription
        """
        if user.stripe_subscription_id != subscription_id:
            raise SubscriptionMismatch('Invalid subscription')

        canceled = _as_dict(stripe.Subscription.cancel(subscription_id))

        user.subscription_status = SubscriptionStatus.CANCELLED
        user.subscription_end_date = datetime.utcnow()
        db.session.commit()
        current_app.logger.info(f'Subscription {subscription_id} cancelled by user {user.id}')

        return canceled.get('canceled_at')

    @staticmethod
    def sync_from_stripe(user: User) -> User:
        """Re-read the user's subscription from Stripe and apply it locally."""
        if not user.stripe_subscription_id:
            raise WebhookProcessingError(f'User {user.id} has no Stripe subscription')

        subscription = _as_dict(stripe.Subscription.retrieve(user.stripe_subscription_id))
        SubscriptionService._apply_subscription_state(user, subscription)
        db.session.commit()
        return user

    # ------------------------------------------------------------------
    # Webhook ingress
    # ------------------------------------------------------------------

    @staticmethod
    def construct_event(payload: bytes, sig_header: Optional[str]) -> dict:
        """Verify a webhook body against the shared secret.

        Args:
            payload: Raw request body, exactly as received
            sig_header: Stripe-Signature header value

        Returns:
            Parsed event dict

        Raises:
            WebhookValidationError: 400 on bad signature, 500 on missing config
        """
        if not sig_header:
            raise WebhookValidationError('No Stripe signature found', status=400)

        webhook_secret = current_app.config.get('STRIPE_WEBHOOK_SECRET')
        if not webhook_secret:
            current_app.logger.error('Missing STRIPE_WEBHOOK_SECRET configuration')
            raise WebhookValidationError('Webhook configuration error', status=500)

        if hasattr(payload, 'decode'):
            try:
                payload = payload.decode('utf-8')
            except UnicodeDecodeError:
                current_app.logger.warning('Webhook body is not valid UTF-8')
                raise WebhookValidationError('Invalid webhook payload', status=400)

        try:
            stripe.WebhookSignature.verify_header(
                payload,
                sig_header,
                webhook_secret,
                tolerance=current_app.config['STRIPE_WEBHOOK_TOLERANCE'],
            )
        except stripe.SignatureVerificationError as e:
            current_app.logger.warning(f'Webhook signature verification failed: {e}')
            raise WebhookValidationError('Invalid webhook signature', status=400)

        try:
            return json.loads(payload)
        except ValueError:
            raise WebhookValidationError('Invalid webhook payload', status=400)

    @staticmethod
    def handle_webhook_event(payload: bytes, sig_header: Optional[str]) -> dict:
        """Verify, deduplicate and apply an incoming Stripe webhook event.

        Returns:
            Dict with event type, handled flag and duplicate flag

        Raises:
            WebhookValidationError: If signature verification fails
            WebhookProcessingError: If a known event cannot be applied
        """
        event = SubscriptionService.construct_event(payload, sig_header)
        return SubscriptionService.process_event(event)

    @staticmethod
    def process_event(event: dict) -> dict:
        """Route a verified event to its handler inside one transaction."""
        event_id = event.get('id')
        event_type = event.get('type')
        result = {'event_type': event_type, 'handled': False, 'applied': False, 'duplicate': False}

        if event_id and BillingEvent.is_processed(event_id):
            current_app.logger.info(f'Skipping already processed event {event_id} ({event_type})')
            result['duplicate'] = True
            return result

        handler = EVENT_HANDLERS.get(event_type)
        if handler is None:
            current_app.logger.info(f'Unhandled event type: {event_type}')
            return result

        data = (event.get('data') or {}).get('object') or {}
        try:
            applied = handler(data)
            # Only events that changed a user row are recorded
            if applied and event_id:
                db.session.add(BillingEvent(
                    stripe_event_id=event_id,
                    event_type=event_type,
                    provider_created_at=_from_timestamp(event.get('created')),
                ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        result['handled'] = True
        result['applied'] = applied
        return result

    # ------------------------------------------------------------------
    # Event handlers. Each returns True when it wrote to a user row and
    # never commits: process_event owns the transaction.
    # ------------------------------------------------------------------

    @staticmethod
    def _find_by_subscription(stripe_sub_id: str) -> Optional[User]:
        user = User.query.filter_by(stripe_subscription_id=stripe_sub_id).first()
        if not user:
            current_app.logger.warning(f'No user found for subscription {stripe_sub_id}')
        return user

    @staticmethod
    def _apply_subscription_state(user: User, sub_data: dict) -> None:
        stripe_status = sub_data.get('status')
        if stripe_status in STRIPE_STATUS_MAP:
            user.subscription_status = STRIPE_STATUS_MAP[stripe_status]
        else:
            current_app.logger.warning(f'Unknown Stripe subscription status: {stripe_status}')

        _, period_end = SubscriptionService._period_bounds(sub_data)
        if period_end:
            user.subscription_end_date = period_end

    @staticmethod
    def _period_bounds(sub_data: dict):
        """Current period (start, end) of a subscription resource.

        Newer API versions carry the period on the subscription items.
        """
        start = sub_data.get('current_period_start')
        end = sub_data.get('current_period_end')
        if start is None or end is None:
            items = (sub_data.get('items') or {}).get('data') or []
            if items:
                start = start or items[0].get('current_period_start')
                end = end or items[0].get('current_period_end')
        return _from_timestamp(start), _from_timestamp(end)

    @staticmethod
    def _period_from_subscription(sub_data: dict) -> SubscriptionPeriod:
        items = (sub_data.get('items') or {}).get('data') or []
        interval = None
        if items:
            recurring = (items[0].get('price') or {}).get('recurring') or {}
            interval = recurring.get('interval')
        if interval == 'year':
            return SubscriptionPeriod.ANNUAL
        return SubscriptionPeriod.MONTHLY

    @staticmethod
    def _invoice_subscription_id(invoice_data: dict) -> Optional[str]:
        subscription_id = invoice_data.get('subscription')
        if subscription_id:
            return subscription_id
        # API versions from 2025-03-31 nest it under parent.subscription_details
        details = (invoice_data.get('parent') or {}).get('subscription_details') or {}
        return details.get('subscription')

    @staticmethod
    def _handle_checkout_completed(session_data: dict) -> bool:
        """Process checkout.session.completed event."""
        user_id = (session_data.get('metadata') or {}).get('user_id')
        if not user_id:
            current_app.logger.error(
                f'Checkout session {session_data.get("id")} completed without user_id metadata'
            )
            raise WebhookProcessingError('No user ID in session metadata')

        subscription_id = session_data.get('subscription')
        if not subscription_id:
            raise WebhookProcessingError('No subscription in session')

        try:
            user = db.session.get(User, int(user_id))
        except (TypeError, ValueError):
            raise WebhookProcessingError(f'Invalid user ID in session metadata: {user_id}')
        if not user:
            current_app.logger.warning(f'Checkout completed for unknown user_id={user_id}')
            return False

        subscription = _as_dict(stripe.Subscription.retrieve(subscription_id))
        period_start, period_end = SubscriptionService._period_bounds(subscription)

        user.subscription_status = SubscriptionStatus.ACTIVE
        user.subscription_period = SubscriptionService._period_from_subscription(subscription)
        user.stripe_subscription_id = subscription_id
        user.stripe_customer_id = session_data.get('customer')
        user.subscription_start_date = period_start or datetime.utcnow()
        user.subscription_end_date = period_end
        current_app.logger.info(f'Subscription {subscription_id} activated for user {user.id}')
        return True

    @staticmethod
    def _handle_subscription_updated(sub_data: dict) -> bool:
        """Process customer.subscription.updated event."""
        user = SubscriptionService._find_by_subscription(sub_data.get('id'))
        if not user:
            return False

        SubscriptionService._apply_subscription_state(user, sub_data)
        current_app.logger.info(
            f'Subscription {sub_data.get("id")} updated: {user.subscription_status.value}'
        )
        return True

    @staticmethod
    def _handle_subscription_deleted(sub_data: dict) -> bool:
        """Process customer.subscription.deleted event."""
        user = SubscriptionService._find_by_subscription(sub_data.get('id'))
        if not user:
            return False

        user.subscription_status = SubscriptionStatus.CANCELLED
        user.subscription_end_date = datetime.utcnow()
        current_app.logger.info(f'Subscription {sub_data.get("id")} deleted for user {user.id}')
        return True

    @staticmethod
    def _handle_payment_succeeded(invoice_data: dict) -> bool:
        """Process invoice.payment_succeeded event."""
        stripe_sub_id = SubscriptionService._invoice_subscription_id(invoice_data)
        if not stripe_sub_id:
            return False

        user = SubscriptionService._find_by_subscription(stripe_sub_id)
        if not user:
            return False

        user.subscription_status = SubscriptionStatus.ACTIVE
        return True

    @staticmethod
    def _handle_payment_failed(invoice_data: dict) -> bool:
        """Process invoice.payment_failed event."""
        stripe_sub_id = SubscriptionService._invoice_subscription_id(invoice_data)
        if not stripe_sub_id:
            return False

        user = SubscriptionService._find_by_subscription(stripe_sub_id)
        if not user:
            return False

        user.subscription_status = SubscriptionStatus.PAST_DUE
        current_app.logger.warning(f'Payment failed for user {user.id}')
        return True


EVENT_HANDLERS = {
    'checkout.session.completed': SubscriptionService._handle_checkout_completed,
    'customer.subscription.updated': SubscriptionService._handle_subscription_updated,
    'customer.subscription.deleted': SubscriptionService._handle_subscription_deleted,
    'invoice.payment_succeeded': SubscriptionService._handle_payment_succeeded,
    'invoice.payment_failed': SubscriptionService._handle_payment_failed,
}
