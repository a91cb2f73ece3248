"""
Services package for TherapyDesk.
Contains business logic separated from routes.
"""

from therapydesk.services.subscription_service import (
    SubscriptionService,
    BillingError,
    WebhookValidationError,
    WebhookProcessingError,
    SubscriptionMismatch,
)

__all__ = [
    'SubscriptionService',
    'BillingError',
    'WebhookValidationError',
    'WebhookProcessingError',
    'SubscriptionMismatch',
]
