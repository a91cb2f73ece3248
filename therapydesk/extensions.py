"""
Flask extensions initialization.
Extensions are initialized here and bound to the app in the factory.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_compress import Compress

# Database
db = SQLAlchemy()

# Database migrations
migrate = Migrate()

# Rate Limiting
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=['100 per minute']
)

# Response compression (gzip)
compress = Compress()


def init_extensions(app):
    """Initialize all extensions with the Flask app."""
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    compress.init_app(app)
