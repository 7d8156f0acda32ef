# Overview: Small read-only helpers (audit log listing, code generation, current period).

from flask import Blueprint, jsonify, request

from ..decorators import require_auth
from ..services import audit_service, catalog_service
from ..time_utils import current_period
from ..validation import ValidationError
from .common import DOMAIN_ERRORS, fail, int_arg


audit_logs_bp = Blueprint("audit_logs", __name__, url_prefix="/api/audit-logs")
utils_bp = Blueprint("utils", __name__, url_prefix="/api/utils")


@audit_logs_bp.get("")
@require_auth
def list_audit_logs():
    """Query params: entity_type, entity_id, action, user_id, limit (max 500)."""
    try:
        events = audit_service.list_audit_events(
            entity_type=request.args.get("entity_type"),
            entity_id=int_arg("entity_id"),
            action=request.args.get("action"),
            user_id=int_arg("user_id"),
            limit=int_arg("limit", 100),
        )
        return jsonify([e.to_dict() for e in events]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@utils_bp.get("/generate-code")
@require_auth
def generate_code():
    """Query param: prefix (letters/digits, e.g. PRD)."""
    try:
        prefix = (request.args.get("prefix") or "").strip()
        if not prefix or not prefix.isalnum() or len(prefix) > 8:
            raise ValidationError("prefix must be 1-8 letters or digits")
        return jsonify({"code": catalog_service.generate_code(prefix)}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@utils_bp.get("/current-period")
@require_auth
def get_current_period():
    return jsonify({"period": current_period()}), 200
