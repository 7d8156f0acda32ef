# Overview: Flask API routes for inter-unit stock transfers.

"""
Inter-unit transfer API routes.

LIFECYCLE: REQUESTED -> APPROVED -> SHIPPED -> RECEIVED, CANCELLED from
REQUESTED or APPROVED. Ship moves stock out of the origin unit; receive
moves the received quantities into the destination unit.
"""

from flask import Blueprint, g, jsonify, request

from ..decorators import require_admin, require_auth
from ..models.documents import TRANSFER_STATUSES
from ..services import transfer_service
from ..services.concurrency import commit_or_conflict
from ..validation import require_choice, require_positive_int
from .common import DOMAIN_ERRORS, datetime_arg, fail, int_arg, internal_error, json_body, require_field


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/transfers")


def _transfer_json(transfer):
    return transfer_service.serialize_transfers([transfer], include_items=True)[0]


@transfers_bp.get("")
@require_auth
def list_transfers():
    """Query params: from_unit_id, to_unit_id, status, start_date, end_date."""
    try:
        status = request.args.get("status")
        if status:
            require_choice(status, TRANSFER_STATUSES, "status")
        transfers = transfer_service.list_transfers(
            from_unit_id=int_arg("from_unit_id"),
            to_unit_id=int_arg("to_unit_id"),
            status=status,
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
        )
        return jsonify(transfer_service.serialize_transfers(transfers)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@transfers_bp.get("/<int:transfer_id>")
@require_auth
def get_transfer(transfer_id: int):
    try:
        return jsonify(_transfer_json(transfer_service.get_transfer(transfer_id))), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@transfers_bp.post("")
@require_auth
@require_admin
def create_transfer():
    """
    Request body:
    {
        "from_unit_id": int,
        "to_unit_id": int,
        "notes": str (optional),
        "items": [{"product_id", "variant_id"?, "requested_quantity", "notes"?}]
    }

    Returns:
        201: Transfer created (REQUESTED)
        400: Invalid request
        403: Forbidden
        404: Unknown unit or product
    """
    try:
        payload = json_body()
        transfer = transfer_service.create_transfer(
            from_unit_id=require_positive_int(require_field(payload, "from_unit_id"), "from_unit_id"),
            to_unit_id=require_positive_int(require_field(payload, "to_unit_id"), "to_unit_id"),
            items=payload.get("items"),
            user_id=g.current_user.id,
            notes=payload.get("notes"),
        )
        commit_or_conflict()
        return jsonify(_transfer_json(transfer)), 201
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("create transfer")


@transfers_bp.post("/<int:transfer_id>/approve")
@require_auth
@require_admin
def approve_transfer(transfer_id: int):
    try:
        transfer = transfer_service.approve_transfer(transfer_id=transfer_id, user_id=g.current_user.id)
        commit_or_conflict()
        return jsonify(_transfer_json(transfer)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("approve transfer")


@transfers_bp.post("/<int:transfer_id>/ship")
@require_auth
@require_admin
def ship_transfer(transfer_id: int):
    """
    Optional body: {"items": [{"item_id": int, "shipped_quantity": int}]}.
    Items left out ship their requested quantity.

    Returns:
        409: transfer not APPROVED, or not enough stock at the origin
    """
    try:
        payload = json_body()
        transfer = transfer_service.ship_transfer(
            transfer_id=transfer_id,
            user_id=g.current_user.id,
            items=payload.get("items"),
        )
        commit_or_conflict()
        return jsonify(_transfer_json(transfer)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("ship transfer")


@transfers_bp.post("/<int:transfer_id>/receive")
@require_auth
@require_admin
def receive_transfer(transfer_id: int):
    """Body: {"items": [{"item_id": int, "received_quantity": int}]} covering every item."""
    try:
        payload = json_body()
        transfer = transfer_service.receive_transfer(
            transfer_id=transfer_id,
            user_id=g.current_user.id,
            items=payload.get("items"),
        )
        commit_or_conflict()
        return jsonify(_transfer_json(transfer)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("receive transfer")


@transfers_bp.post("/<int:transfer_id>/cancel")
@require_auth
@require_admin
def cancel_transfer(transfer_id: int):
    try:
        payload = json_body()
        transfer = transfer_service.cancel_transfer(
            transfer_id=transfer_id,
            user_id=g.current_user.id,
            reason=payload.get("reason"),
        )
        commit_or_conflict()
        return jsonify(_transfer_json(transfer)), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
    except Exception:
        return internal_error("cancel transfer")
