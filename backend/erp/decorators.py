# Overview: Authentication and role decorators for API routes.

from functools import wraps
from flask import request, jsonify, g

from .services import session_service


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def load_current_user():
    """
    Resolve the caller from the Authorization header without failing.

    Used by public procedures (auth.me) that answer differently for
    anonymous callers.
    """
    token = _bearer_token()
    if not token:
        return None
    return session_service.validate_session(token)


def require_auth(f):
    """
    Require a valid Bearer session token.

    Sets g.current_user and g.session_token. Returns 401 UNAUTHORIZED when
    the header is missing, the token is unknown/expired/revoked, or the
    user is deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token", "code": "UNAUTHORIZED"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """
    Gate admin-only procedures.

    Must be stacked under @require_auth. Non-admin callers get 403 FORBIDDEN
    before the request body is read or any service runs.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not hasattr(g, "current_user"):
            return jsonify({"error": "Authentication required", "code": "UNAUTHORIZED"}), 401
        if not g.current_user.is_admin:
            return jsonify({
                "error": "Admin access required",
                "code": "FORBIDDEN",
            }), 403
        return f(*args, **kwargs)

    return decorated_function
