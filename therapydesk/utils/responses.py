"""
API helper functions: error formatting and response builders.
"""
from flask import jsonify


def api_error(code, message, status=400, details=None):
    """Build a standard API error response."""
    error_body = {
        'error': {
            'code': code,
            'message': message,
        }
    }
    if details:
        error_body['error']['details'] = details
    return jsonify(error_body), status


def api_success(data, status=200):
    """Build a plain JSON success response."""
    return jsonify(data), status
