"""Helper functions for the application."""
from datetime import datetime, timezone
from typing import Any, Optional

from flask import current_app, has_app_context, jsonify

CLOCK_EXTENSION = 'attendance_clock'


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def app_now() -> datetime:
    """Current time from the application clock, falling back to utcnow outside an app."""
    if has_app_context():
        return current_app.extensions.get(CLOCK_EXTENSION, utcnow)()
    return utcnow()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp from a request into naive UTC."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def handle_error(error, status_code: int):
    """Handle application errors with consistent format."""
    message = getattr(error, 'description', None) or str(error)
    return jsonify({
        'error': True,
        'message': message,
        'status_code': status_code
    }), status_code


def success_response(data: Any = None, message: str = "Success", status_code: int = 200):
    """Return consistent success response."""
    response = {
        'error': False,
        'message': message
    }

    if data is not None:
        response['data'] = data

    return jsonify(response), status_code


def error_response(message: str, status_code: int = 400, code: str = None, data: Any = None):
    """Return consistent error response."""
    response = {
        'error': True,
        'message': message,
        'status_code': status_code
    }
    if code:
        response['code'] = code
    if data is not None:
        response['data'] = data

    return jsonify(response), status_code
