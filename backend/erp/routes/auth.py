# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

"""
Authentication API routes

- POST /login: username (or email) + password -> bearer session token
- GET /me: public identity check; null for anonymous callers
- POST /logout: revokes the caller's token
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import load_current_user, require_auth
from ..services import auth_service, session_service


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """Authenticate user and create session token."""
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not username or not password:
            return jsonify({"error": "username and password required", "code": "BAD_REQUEST"}), 400

        user = auth_service.authenticate(username, password)
        if not user:
            return jsonify({"error": "Invalid credentials", "code": "UNAUTHORIZED"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return jsonify({
            "user": user.to_dict(),
            "token": token,
            "session": session.to_dict(),
        }), 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_SERVER_ERROR"}), 500


@auth_bp.get("/me")
def me_route():
    user = load_current_user()
    return jsonify({"user": user.to_dict() if user else None}), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    try:
        session_service.revoke_session(g.session_token, reason="User logout")
        return jsonify({"success": True}), 200
    except Exception:
        current_app.logger.exception("Failed to logout user")
        return jsonify({"error": "Internal server error", "code": "INTERNAL_SERVER_ERROR"}), 500
