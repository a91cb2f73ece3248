#!/usr/bin/env python
"""
TherapyDesk entry point.

    python run.py              # local API on FLASK_PORT (5000)
    gunicorn -c gunicorn.conf.py run:app

Point the Stripe CLI at the webhook when developing locally:
    stripe listen --forward-to localhost:5000/billing/webhook
"""
import os
from dotenv import load_dotenv

load_dotenv()

from therapydesk import create_app  # noqa: E402

app = create_app(os.environ.get('FLASK_ENV', 'development'))

if __name__ == '__main__':
    port = int(os.environ.get('FLASK_PORT', 5000))
    if not app.config.get('STRIPE_WEBHOOK_SECRET'):
        app.logger.warning('STRIPE_WEBHOOK_SECRET not set: /billing/webhook will answer 500')
    app.run(
        host=os.environ.get('FLASK_HOST', '127.0.0.1'),
        port=port,
        debug=os.environ.get('FLASK_DEBUG', 'false').lower() == 'true',
    )
