# Overview: Flask API routes for sales orders; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..models.orders import SALES_ORDER_STATUSES
from ..services import order_service
from ..services.concurrency import commit_or_conflict
from ..validation import optional_int, require_choice
from .common import DOMAIN_ERRORS, datetime_arg, fail, int_arg, internal_error, json_body, require_field


sales_orders_bp = Blueprint("sales_orders", __name__, url_prefix="/api/sales-orders")


@sales_orders_bp.get("")
@require_auth
def list_sales_orders():
    """Query params: customer_id, status, start_date, end_date. Rows carry customer_name."""
    try:
        status = request.args.get("status")
        if status:
            require_choice(status, SALES_ORDER_STATUSES, "status")
        orders = order_service.list_sales_orders(
            customer_id=int_arg("customer_id"),
            status=status,
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
        )
        return jsonify(order_service.serialize_sales_orders(orders)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@sales_orders_bp.get("/<int:order_id>")
@require_auth
def get_sales_order(order_id: int):
    try:
        order = order_service.get_sales_order(order_id)
        return jsonify(order.to_dict(include_items=True)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@sales_orders_bp.post("")
@require_auth
@require_admin
def create_sales_order():
    """
    Request body:
    {
        "customer_id", "unit_id": int (optional),
        "discount_cents", "shipping_cents": int (optional),
        "payment_method": str (optional),
        "notes": str (optional),
        "items": [{"product_id", "variant_id"?, "quantity", "unit_price_cents"?, "discount_cents"?}]
    }
    """
    try:
        payload = json_body()
        order = order_service.create_sales_order(
            items=payload.get("items"),
            user_id=g.current_user.id,
            customer_id=optional_int(payload.get("customer_id"), "customer_id"),
            unit_id=optional_int(payload.get("unit_id"), "unit_id"),
            discount_cents=payload.get("discount_cents", 0),
            shipping_cents=payload.get("shipping_cents", 0),
            payment_method=payload.get("payment_method"),
            notes=payload.get("notes"),
        )
        commit_or_conflict()
        return jsonify(order.to_dict(include_items=True)), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create sales order")


@sales_orders_bp.post("/<int:order_id>/status")
@require_auth
@require_admin
def update_sales_order_status(order_id: int):
    """Confirming creates the receivable and updates customer statistics."""
    try:
        payload = json_body()
        order = order_service.update_sales_order_status(
            order_id=order_id,
            status=require_field(payload, "status"),
            user_id=g.current_user.id,
        )
        commit_or_conflict()
        return jsonify(order.to_dict()), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("update sales order status")
