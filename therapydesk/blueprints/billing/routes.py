"""
Billing routes - Stripe subscription management.
4 routes: subscription (status), checkout, cancel, webhook.
"""
from flask import request, current_app, g
from marshmallow import ValidationError

from therapydesk.blueprints.billing import billing_bp
from therapydesk.blueprints.billing.schemas import (
    CancelRequestSchema,
    CheckoutRequestSchema,
    SubscriptionSchema,
)
from therapydesk.decorators.auth import jwt_required
from therapydesk.extensions import db, limiter
from therapydesk.services.subscription_service import (
    SubscriptionMismatch,
    SubscriptionService,
    WebhookValidationError,
)
from therapydesk.utils.responses import api_error, api_success


@billing_bp.route('/subscription', methods=['GET'])
@jwt_required
def subscription():
    """Current subscription state of the caller."""
    return api_success(SubscriptionSchema().dump(g.api_user))


@billing_bp.route('/checkout', methods=['POST'])
@jwt_required
@limiter.limit('10 per hour')
def checkout():
    """Create a Stripe Checkout Session and return its id.

    Request body:
        {"priceId": "...", "successUrl": "...", "cancelUrl": "..."}

    Returns:
        {"sessionId": "cs_..."}
    """
    data = request.get_json(silent=True)
    if data is None:
        return api_error('invalid_json', 'Invalid request body', 400)

    try:
        params = CheckoutRequestSchema().load(data)
    except ValidationError as e:
        return api_error('missing_parameters', 'Missing required parameters', 400, details=e.messages)

    try:
        session_id = SubscriptionService.create_checkout_session(g.api_user, **params)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Checkout session creation failed: {e}')
        return api_error('checkout_failed', str(e) or 'Failed to create checkout session', 500)

    return api_success({'sessionId': session_id})


@billing_bp.route('/cancel', methods=['POST'])
@jwt_required
@limiter.limit('10 per hour')
def cancel():
    """Cancel the caller's subscription immediately.

    Request body:
        {"subscriptionId": "sub_..."}

    Returns:
        {"message": "...", "cancelAt": <epoch seconds>}
    """
    data = request.get_json(silent=True)
    if data is None:
        return api_error('invalid_json', 'Invalid request body', 400)

    try:
        params = CancelRequestSchema().load(data)
    except ValidationError as e:
        return api_error('missing_parameters', 'Subscription ID is required', 400, details=e.messages)

    try:
        cancel_at = SubscriptionService.cancel_subscription(g.api_user, params['subscription_id'])
    except SubscriptionMismatch as e:
        current_app.logger.warning(f'User {g.api_user.id} tried to cancel a foreign subscription')
        return api_error('invalid_subscription', str(e), 403)
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f'Subscription cancellation failed: {e}')
        return api_error('cancel_failed', str(e) or 'Failed to cancel subscription', 500)

    return api_success({
        'message': 'Subscription cancelled successfully',
        'cancelAt': cancel_at,
    })


@billing_bp.route('/webhook', methods=['POST'])
@limiter.limit('100 per minute')
def webhook():
    """Handle Stripe webhook events.

    Unauthenticated: trust comes from the Stripe signature over the raw body.
    """
    payload = request.get_data()
    sig_header = request.headers.get('Stripe-Signature')

    try:
        result = SubscriptionService.handle_webhook_event(payload, sig_header)
    except WebhookValidationError as e:
        code = 'invalid_signature' if e.status == 400 else 'configuration_error'
        return api_error(code, str(e), e.status)
    except Exception as e:
        current_app.logger.error(f'Webhook processing error: {e}', exc_info=True)
        return api_error('processing_error', str(e) or 'Internal server error', 500)

    current_app.logger.info(
        f'Webhook processed: {result["event_type"]} '
        f'(handled={result["handled"]}, duplicate={result["duplicate"]})'
    )
    return api_success({'received': True})
