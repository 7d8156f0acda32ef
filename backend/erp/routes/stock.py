# Overview: Flask API routes for the product-level stock ledger and stock alerts.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..models.stock import MOVEMENT_REASONS, MOVEMENT_TYPES
from ..services import stock_service
from ..services.concurrency import commit_or_conflict
from ..validation import coerce_int, optional_int, require_choice, require_positive_int
from .common import DOMAIN_ERRORS, bool_arg, datetime_arg, fail, int_arg, internal_error, json_body, require_field


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def movement_kwargs(payload: dict) -> dict:
    """Validate a movement body into record_movement keyword arguments."""
    unit_cost = payload.get("unit_cost_cents")
    return {
        "product_id": require_positive_int(require_field(payload, "product_id"), "product_id"),
        "variant_id": optional_int(payload.get("variant_id"), "variant_id"),
        "type": require_choice(require_field(payload, "type"), MOVEMENT_TYPES, "type"),
        "reason": require_choice(require_field(payload, "reason"), MOVEMENT_REASONS, "reason"),
        "quantity": coerce_int(require_field(payload, "quantity"), "quantity"),
        "unit_cost_cents": coerce_int(unit_cost, "unit_cost_cents") if unit_cost is not None else None,
        "reference_type": payload.get("reference_type"),
        "reference_id": optional_int(payload.get("reference_id"), "reference_id"),
        "batch": payload.get("batch"),
        "notes": payload.get("notes"),
    }


@stock_bp.get("/movements")
@require_auth
def list_movements():
    """Query params: product_id, type, start_date, end_date, limit."""
    try:
        movement_type = request.args.get("type")
        if movement_type:
            require_choice(movement_type, MOVEMENT_TYPES, "type")
        movements = stock_service.list_movements(
            product_id=int_arg("product_id"),
            movement_type=movement_type,
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
            scope=stock_service.SCOPE_PRODUCT,
            limit=int_arg("limit", 100),
        )
        return jsonify([m.to_dict() for m in movements]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@stock_bp.post("/movements")
@require_auth
@require_admin
def add_movement():
    """
    Record a product-level ledger entry.

    Request body:
    {
        "product_id": int,
        "variant_id": int (optional),
        "type": "IN" | "OUT" | "ADJUSTMENT",
        "reason": str,
        "quantity": int,
        "unit_cost_cents": int (optional),
        "reference_type", "reference_id", "batch", "notes" (optional)
    }

    Returns:
        201: movement recorded
        409: OUT beyond available stock
    """
    try:
        movement = stock_service.add_manual_movement(user_id=g.current_user.id, **movement_kwargs(json_body()))
        commit_or_conflict()
        return jsonify(movement.to_dict()), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("record stock movement")


@stock_bp.get("/alerts")
@require_auth
def list_alerts():
    try:
        alerts = stock_service.list_alerts(
            unread_only=bool_arg("unread_only", False),
            limit=int_arg("limit", 100),
        )
        return jsonify([a.to_dict() for a in alerts]), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@stock_bp.post("/alerts/<int:alert_id>/read")
@require_auth
@require_admin
def mark_alert_read(alert_id: int):
    try:
        alert = stock_service.mark_alert_read(alert_id)
        commit_or_conflict()
        return jsonify(alert.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("mark alert read")


@stock_bp.post("/alerts/<int:alert_id>/notify")
@require_auth
@require_admin
def send_alert_notification(alert_id: int):
    """Always 200 for an existing alert; success is false when delivery failed."""
    try:
        delivered = stock_service.send_alert_notification(alert_id)
        if delivered:
            commit_or_conflict()
        return jsonify({"success": delivered}), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("send alert notification")
