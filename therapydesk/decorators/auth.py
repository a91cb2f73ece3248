"""
JWT bearer authentication for the JSON endpoints.
"""
from functools import wraps
from datetime import datetime, timedelta, timezone

import jwt
from flask import request, current_app, g

from therapydesk.extensions import db
from therapydesk.utils.responses import api_error
from therapydesk.models.user import User


def _secret():
    return current_app.config.get('JWT_SECRET_KEY') or current_app.config['SECRET_KEY']


def create_access_token(user_id, expires_minutes=None):
    """Create a JWT access token."""
    if expires_minutes is None:
        expires_minutes = current_app.config['JWT_ACCESS_TOKEN_MINUTES']
    payload = {
        'sub': str(user_id),
        'type': 'access',
        'iat': datetime.now(timezone.utc),
        'exp': datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, _secret(), algorithm='HS256')


def decode_token(token):
    """Decode and validate a JWT token. Returns payload or None."""
    try:
        return jwt.decode(token, _secret(), algorithms=['HS256'])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def get_current_api_user():
    """Extract user from Authorization header. Returns (user, error_response)."""
    auth_header = request.headers.get('Authorization', '')
    if not auth_header.startswith('Bearer '):
        return None, api_error('unauthorized', 'Unauthorized', 401)

    payload = decode_token(auth_header[7:])
    if payload is None or payload.get('type') != 'access':
        return None, api_error('unauthorized', 'Unauthorized', 401)

    try:
        user_id = int(payload['sub'])
    except (KeyError, ValueError, TypeError):
        return None, api_error('unauthorized', 'Unauthorized', 401)

    user = db.session.get(User, user_id)
    if user is None or not user.is_active:
        return None, api_error('unauthorized', 'Unauthorized', 401)

    return user, None


def jwt_required(f):
    """Decorator: require valid JWT access token."""
    @wraps(f)
    def decorated(*args, **kwargs):
        user, error = get_current_api_user()
        if error:
            return error
        g.api_user = user
        return f(*args, **kwargs)
    return decorated
