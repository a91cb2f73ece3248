"""
Marshmallow schemas for billing request bodies and responses.
"""
from marshmallow import Schema, fields, validate, EXCLUDE


class BaseSchema(Schema):
    """Base schema with common config."""
    class Meta:
        unknown = EXCLUDE


# ── Requests ────────────────────────────────────────────────

class CheckoutRequestSchema(BaseSchema):
    """Body of POST /billing/checkout."""
    price_id = fields.Str(required=True, data_key='priceId', validate=validate.Length(min=1))
    success_url = fields.Url(load_default=None, data_key='successUrl', require_tld=False)
    cancel_url = fields.Url(load_default=None, data_key='cancelUrl', require_tld=False)


class CancelRequestSchema(BaseSchema):
    """Body of POST /billing/cancel."""
    subscription_id = fields.Str(
        required=True, data_key='subscriptionId', validate=validate.Length(min=1),
    )


# ── Subscription ────────────────────────────────────────────

class SubscriptionSchema(BaseSchema):
    """Denormalized subscription state of a user."""
    user_id = fields.Int(attribute='id', dump_only=True)
    email = fields.Email(dump_only=True)
    status = fields.Method('get_status')
    period = fields.Method('get_period')
    stripe_subscription_id = fields.Str(allow_none=True)
    trial_start_date = fields.DateTime(format='iso', allow_none=True)
    trial_end_date = fields.DateTime(format='iso', allow_none=True)
    trial_days_left = fields.Int(allow_none=True)
    subscription_start_date = fields.DateTime(format='iso', allow_none=True)
    subscription_end_date = fields.DateTime(format='iso', allow_none=True)
    has_access = fields.Bool()

    def get_status(self, obj):
        return obj.subscription_status.value if obj.subscription_status else None

    def get_period(self, obj):
        return obj.subscription_period.value if obj.subscription_period else None
