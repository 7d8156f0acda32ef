# Overview: Flask API routes for customer returns and exchanges.

"""
Returns API routes.

LIFECYCLE: PENDING -> APPROVED -> PROCESSED, PENDING -> REJECTED.
Processing restocks sellable items and posts cash/credit refunds.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..models.documents import RETURN_STATUSES, RETURN_TYPES
from ..services import return_service
from ..services.concurrency import commit_or_conflict
from ..validation import ValidationError, optional_int, require_choice
from .common import DOMAIN_ERRORS, datetime_arg, fail, int_arg, internal_error, json_body, require_field


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.get("")
@require_auth
def list_returns():
    """Query params: customer_id, unit_id, type, status, start_date, end_date."""
    try:
        return_type = request.args.get("type")
        if return_type:
            require_choice(return_type, RETURN_TYPES, "type")
        status = request.args.get("status")
        if status:
            require_choice(status, RETURN_STATUSES, "status")
        docs = return_service.list_returns(
            customer_id=int_arg("customer_id"),
            unit_id=int_arg("unit_id"),
            type=return_type,
            status=status,
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
        )
        return jsonify(return_service.serialize_returns(docs)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@returns_bp.get("/<int:return_id>")
@require_auth
def get_return(return_id: int):
    try:
        return jsonify(return_service.get_return(return_id).to_dict(include_items=True)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@returns_bp.post("")
@require_auth
@require_admin
def create_return():
    """
    Request body:
    {
        "type": "RETURN" | "EXCHANGE",
        "reason": str,
        "sales_order_id", "customer_id", "unit_id": int (optional),
        "reason_details", "notes": str (optional),
        "refund_amount_cents": int (optional, defaults to the item total),
        "refund_method": str (optional),
        "items": [{"product_id", "variant_id"?, "quantity", "unit_price_cents", "condition"?, "notes"?}]
    }
    """
    try:
        payload = json_body()
        doc = return_service.create_return(
            type=require_field(payload, "type"),
            reason=require_field(payload, "reason"),
            items=payload.get("items"),
            user_id=g.current_user.id,
            sales_order_id=optional_int(payload.get("sales_order_id"), "sales_order_id"),
            customer_id=optional_int(payload.get("customer_id"), "customer_id"),
            unit_id=optional_int(payload.get("unit_id"), "unit_id"),
            reason_details=payload.get("reason_details"),
            refund_amount_cents=payload.get("refund_amount_cents"),
            refund_method=payload.get("refund_method"),
            notes=payload.get("notes"),
        )
        commit_or_conflict()
        return jsonify(doc.to_dict(include_items=True)), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create return")


@returns_bp.post("/<int:return_id>/approve")
@require_auth
@require_admin
def approve_return(return_id: int):
    try:
        doc = return_service.approve_return(return_id=return_id, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(doc.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("approve return")


@returns_bp.post("/<int:return_id>/reject")
@require_auth
@require_admin
def reject_return(return_id: int):
    try:
        payload = json_body()
        doc = return_service.reject_return(
            return_id=return_id,
            user_id=g.current_user.id,
            reason=payload.get("reason"),
        )
        commit_or_conflict()
        return jsonify(doc.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("reject return")


@returns_bp.post("/<int:return_id>/process")
@require_auth
@require_admin
def process_return(return_id: int):
    """Body: {"return_to_stock": bool} (default true)."""
    try:
        payload = json_body()
        return_to_stock = payload.get("return_to_stock", True)
        if not isinstance(return_to_stock, bool):
            raise ValidationError("return_to_stock must be a boolean")
        doc = return_service.process_return(
            return_id=return_id,
            user_id=g.current_user.id,
            return_to_stock=return_to_stock,
        )
        commit_or_conflict()
        return jsonify(doc.to_dict(include_items=True)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("process return")
