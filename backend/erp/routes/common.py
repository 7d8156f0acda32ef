# Overview: Shared helpers for API routes: error translation and query-string parsing.

from __future__ import annotations

from datetime import datetime

from flask import current_app, jsonify, request

from ..extensions import db
from ..services.storage_service import StorageError
from ..time_utils import parse_iso_datetime
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int


# Errors a handler turns into a 4xx/502 reply instead of a 500
DOMAIN_ERRORS = (ValidationError, NotFoundError, ConflictError, StorageError)


def error_response(exc: Exception):
    """Map a domain exception to ({"error", "code"}, status)."""
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc), "code": "BAD_REQUEST"}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc), "code": "NOT_FOUND"}), 404
    if isinstance(exc, ConflictError):
        return jsonify({"error": str(exc), "code": "CONFLICT"}), 409
    if isinstance(exc, StorageError):
        return jsonify({"error": str(exc), "code": "BAD_GATEWAY"}), 502
    return jsonify({"error": "Internal server error", "code": "INTERNAL_SERVER_ERROR"}), 500


def fail(exc: Exception):
    """Roll back the request's work and answer with the mapped error."""
    db.session.rollback()
    return error_response(exc)


def internal_error(action: str):
    """Roll back, log with traceback and answer 500."""
    db.session.rollback()
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error", "code": "INTERNAL_SERVER_ERROR"}), 500


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def int_arg(name: str, default: int | None = None) -> int | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    return coerce_int(raw, name)


def bool_arg(name: str, default: bool | None = None) -> bool | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes"}:
        return True
    if value in {"0", "false", "no"}:
        return False
    raise ValidationError(f"{name} must be true or false")


def datetime_arg(name: str) -> datetime | None:
    raw = request.args.get(name)
    if not raw:
        return None
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


def datetime_field(payload: dict, name: str) -> datetime | None:
    raw = payload.get(name)
    if raw is None or raw == "":
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{name} must be an ISO-8601 datetime")
    try:
        return parse_iso_datetime(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime")


def require_field(payload: dict, name: str):
    value = payload.get(name)
    if value is None or value == "":
        raise ValidationError(f"Missing required field: {name}")
    return value
