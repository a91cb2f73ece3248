# =============================================================================
# TherapyDesk - Gunicorn Configuration
# Usage: gunicorn -c gunicorn.conf.py run:app
# =============================================================================
import os

bind = f"0.0.0.0:{os.environ.get('PORT', '8080')}"

workers = int(os.environ.get('WEB_CONCURRENCY', 2))
threads = int(os.environ.get('GUNICORN_THREADS', 4))
worker_class = "gthread"

# Stripe gives up on a webhook delivery after roughly 10s and retries.
timeout = 20
graceful_timeout = 20
keepalive = 5

accesslog = "-"
errorlog = "-"
loglevel = os.environ.get("LOG_LEVEL", "info")

max_requests = 1000
max_requests_jitter = 50

# Webhook bodies stay small; headers include the Stripe-Signature line.
limit_request_line = 4094
limit_request_field_size = 8190

forwarded_allow_ips = os.environ.get("FORWARDED_ALLOW_IPS", "127.0.0.1")
