# Overview: Flask API routes for purchase orders; parses input and returns JSON responses.

"""
Purchase order API routes.

LIFECYCLE: DRAFT -> PENDING -> APPROVED -> ORDERED, CANCELLED from the
first three. PARTIAL / RECEIVED are reached only through /receive.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..models.orders import PURCHASE_ORDER_STATUSES
from ..services import order_service
from ..services.concurrency import commit_or_conflict
from ..validation import optional_int, require_choice
from .common import DOMAIN_ERRORS, datetime_field, fail, int_arg, internal_error, json_body, require_field


purchase_orders_bp = Blueprint("purchase_orders", __name__, url_prefix="/api/purchase-orders")


@purchase_orders_bp.get("")
@require_auth
def list_purchase_orders():
    """Query params: supplier_id, status. Rows carry supplier_name."""
    try:
        status = request.args.get("status")
        if status:
            require_choice(status, PURCHASE_ORDER_STATUSES, "status")
        orders = order_service.list_purchase_orders(supplier_id=int_arg("supplier_id"), status=status)
        return jsonify(order_service.serialize_purchase_orders(orders)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@purchase_orders_bp.get("/<int:order_id>")
@require_auth
def get_purchase_order(order_id: int):
    try:
        order = order_service.get_purchase_order(order_id)
        return jsonify(order.to_dict(include_items=True)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@purchase_orders_bp.post("")
@require_auth
@require_admin
def create_purchase_order():
    """
    Request body:
    {
        "supplier_id": int,
        "unit_id": int (optional, receiving unit),
        "expected_date": ISO-8601 (optional),
        "discount_cents", "shipping_cents": int (optional),
        "notes": str (optional),
        "items": [{"product_id", "variant_id"?, "quantity", "unit_cost_cents"?, "discount_cents"?}]
    }
    """
    try:
        payload = json_body()
        order = order_service.create_purchase_order(
            supplier_id=require_field(payload, "supplier_id"),
            items=payload.get("items"),
            user_id=g.current_user.id,
            unit_id=optional_int(payload.get("unit_id"), "unit_id"),
            expected_date=datetime_field(payload, "expected_date"),
            discount_cents=payload.get("discount_cents", 0),
            shipping_cents=payload.get("shipping_cents", 0),
            notes=payload.get("notes"),
        )
        commit_or_conflict()
        return jsonify(order.to_dict(include_items=True)), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create purchase order")


@purchase_orders_bp.post("/<int:order_id>/status")
@require_auth
@require_admin
def update_purchase_order_status(order_id: int):
    try:
        payload = json_body()
        order = order_service.update_purchase_order_status(
            order_id=order_id,
            status=require_field(payload, "status"),
            user_id=g.current_user.id,
        )
        commit_or_conflict()
        return jsonify(order.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update purchase order status")


@purchase_orders_bp.post("/<int:order_id>/receive")
@require_auth
@require_admin
def receive_purchase_order(order_id: int):
    """
    Request body:
    {
        "items": [{"item_id": int, "received_quantity": int}]
    }

    Quantities accumulate; the order becomes RECEIVED once every item is
    complete, PARTIAL otherwise.
    """
    try:
        payload = json_body()
        order = order_service.receive_purchase_order(
            order_id=order_id,
            receipts=payload.get("items"),
            user_id=g.current_user.id,
        )
        commit_or_conflict()
        return jsonify(order.to_dict(include_items=True)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("receive purchase order")
