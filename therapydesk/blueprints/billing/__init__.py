"""Billing blueprint - Stripe checkout, cancellation and webhook."""
from flask import Blueprint
from flask_cors import CORS

billing_bp = Blueprint('billing', __name__)

# Browser clients call checkout/cancel cross-origin; the webhook is
# server-to-server and ignores CORS entirely.
CORS(billing_bp, resources={r"/*": {
    "origins": "*",
    "send_wildcard": True,
    "methods": ["GET", "POST", "OPTIONS"],
    "allow_headers": ["Authorization", "Content-Type"],
}})

from therapydesk.blueprints.billing import routes  # noqa: F401, E402
