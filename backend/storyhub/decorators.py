# Overview: Request identity decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

ADMIN_ROLES = {"admin"}


def _header_user_id():
    """
    Parse X-User-Id set by the upstream gateway.

    Returns (user_id, error_response). Absent header -> (None, None).
    """
    raw = request.headers.get("X-User-Id")
    if raw is None or not raw.strip():
        return None, None
    try:
        user_id = int(raw)
    except ValueError:
        return None, (jsonify({"error": {"code": "invalid_user", "message": "X-User-Id must be an integer"}}), 400)
    if user_id <= 0:
        return None, (jsonify({"error": {"code": "invalid_user", "message": "X-User-Id must be positive"}}), 400)
    return user_id, None


def _set_identity(user_id) -> None:
    g.user_id = user_id
    g.user_role = (request.headers.get("X-User-Role") or "").strip().lower() or None


def optional_user(f):
    """
    Identify the caller if the gateway forwarded one.

    Sets g.user_id (None for anonymous callers) and g.user_role.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id, error = _header_user_id()
        if error:
            return error
        _set_identity(user_id)
        return f(*args, **kwargs)

    return decorated_function


def require_user(f):
    """Reject anonymous callers with 401."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user_id, error = _header_user_id()
        if error:
            return error
        if user_id is None:
            return jsonify({"error": {"code": "authentication_required", "message": "Authentication required"}}), 401
        _set_identity(user_id)
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Authenticated caller whose X-User-Role is an admin role; 403 otherwise."""
    @wraps(f)
    @require_user
    def decorated_function(*args, **kwargs):
        if g.user_role not in ADMIN_ROLES:
            return jsonify({"error": {"code": "forbidden", "message": "Admin role required"}}), 403
        return f(*args, **kwargs)

    return decorated_function
