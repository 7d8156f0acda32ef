# Overview: Inter-unit stock transfers: request, approve, ship, receive, cancel.

"""
Inter-unit transfer service.

Manage stock moving between units with an approval workflow. Shipping and
receiving write unit-level movements through the stock ledger.

LIFECYCLE:
1. REQUESTED: transfer created with its items
2. APPROVED: approved, ready to ship
3. SHIPPED: left the origin unit (OUT / TRANSFER_OUT per item)
4. RECEIVED: arrived at the destination (IN / TRANSFER_IN per item, received quantity)
5. CANCELLED: cancelled from REQUESTED or APPROVED; no stock effect

Every transition locks the transfer row and checks its current status.
"""
from __future__ import annotations

from datetime import datetime

from ..extensions import db
from ..models import Product, ProductVariant, StockTransfer, StoreUnit, TransferItem
from ..models.documents import (
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_CANCELLED,
    TRANSFER_STATUS_RECEIVED,
    TRANSFER_STATUS_REQUESTED,
    TRANSFER_STATUS_SHIPPED,
)
from ..models.stock import MOVEMENT_IN, MOVEMENT_OUT, REASON_TRANSFER_IN, REASON_TRANSFER_OUT
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    optional_int,
    require_items,
    require_positive_int,
)
from . import stock_service
from .audit_service import append_audit_event
from .concurrency import get_for_update
from .document_service import PREFIX_TRANSFER, next_document_number
from erp.time_utils import utcnow


CANCELLABLE_STATUSES = {TRANSFER_STATUS_REQUESTED, TRANSFER_STATUS_APPROVED}


class TransferStateError(ConflictError):
    """Raised when a transition is attempted from the wrong status."""
    pass


def _locked_transfer(transfer_id: int) -> StockTransfer:
    transfer = get_for_update(StockTransfer, transfer_id)
    if not transfer:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def _require_status(transfer: StockTransfer, expected: str, action: str) -> None:
    if transfer.status != expected:
        raise TransferStateError(
            f"Cannot {action} transfer in {transfer.status} status (requires {expected})"
        )


def _quantities_by_item(entries: list[dict] | None, field: str) -> dict[int, int]:
    """[{item_id, <field>}] -> {item_id: quantity}; quantities must be >= 0."""
    result: dict[int, int] = {}
    for entry in entries or []:
        if not isinstance(entry, dict):
            raise ValidationError("Each item must be an object")
        item_id = require_positive_int(entry.get("item_id"), "item_id")
        quantity = coerce_int(entry.get(field), field) if entry.get(field) is not None else None
        if quantity is None:
            raise ValidationError(f"{field} is required")
        if quantity < 0:
            raise ValidationError(f"{field} must be >= 0")
        result[item_id] = quantity
    return result


def create_transfer(
    *,
    from_unit_id: int,
    to_unit_id: int,
    items: list[dict],
    user_id: int,
    notes: str | None = None,
) -> StockTransfer:
    """
    Create a transfer document (status: REQUESTED).

    Args:
        from_unit_id: Origin unit
        to_unit_id: Destination unit (must differ from origin)
        items: [{product_id, variant_id?, requested_quantity, notes?}]
        user_id: Requesting user

    Raises:
        ValidationError: same unit, empty items, bad quantities
        NotFoundError: unknown unit, product or variant
    """
    from_unit_id = require_positive_int(from_unit_id, "from_unit_id")
    to_unit_id = require_positive_int(to_unit_id, "to_unit_id")
    if from_unit_id == to_unit_id:
        raise ValidationError("Cannot transfer to the same unit")
    for unit_id in (from_unit_id, to_unit_id):
        if not db.session.get(StoreUnit, unit_id):
            raise NotFoundError(f"Store unit {unit_id} not found")
    items = require_items(items)

    transfer = StockTransfer(
        transfer_number=next_document_number(PREFIX_TRANSFER),
        from_unit_id=from_unit_id,
        to_unit_id=to_unit_id,
        status=TRANSFER_STATUS_REQUESTED,
        notes=notes,
        requested_by_user_id=user_id,
        requested_at=utcnow(),
    )
    db.session.add(transfer)
    db.session.flush()

    for item in items:
        product_id = require_positive_int(item.get("product_id"), "product_id")
        if not db.session.get(Product, product_id):
            raise NotFoundError(f"Product {product_id} not found")
        variant_id = optional_int(item.get("variant_id"), "variant_id")
        if variant_id is not None:
            variant = db.session.get(ProductVariant, variant_id)
            if not variant:
                raise NotFoundError(f"Variant {variant_id} not found")
            if variant.product_id != product_id:
                raise ValidationError(f"Variant {variant_id} does not belong to product {product_id}")

        db.session.add(TransferItem(
            transfer_id=transfer.id,
            product_id=product_id,
            variant_id=variant_id,
            requested_quantity=require_positive_int(item.get("requested_quantity"), "requested_quantity"),
            notes=item.get("notes"),
        ))

    db.session.flush()

    append_audit_event(
        action="transfer.requested",
        entity_type="transfer",
        entity_id=transfer.id,
        user_id=user_id,
        details={
            "transfer_number": transfer.transfer_number,
            "from_unit_id": from_unit_id,
            "to_unit_id": to_unit_id,
            "items": len(items),
        },
    )
    return transfer


def approve_transfer(*, transfer_id: int, user_id: int) -> StockTransfer:
    transfer = _locked_transfer(transfer_id)
    _require_status(transfer, TRANSFER_STATUS_REQUESTED, "approve")

    transfer.status = TRANSFER_STATUS_APPROVED
    transfer.approved_by_user_id = user_id
    transfer.approved_at = utcnow()
    db.session.flush()

    append_audit_event(
        action="transfer.approved",
        entity_type="transfer",
        entity_id=transfer.id,
        user_id=user_id,
    )
    return transfer


def ship_transfer(
    *,
    transfer_id: int,
    user_id: int,
    items: list[dict] | None = None,
) -> StockTransfer:
    """
    Ship an approved transfer.

    Shipped quantity per item defaults to the requested quantity; overrides
    come as [{item_id, shipped_quantity}]. Each positive shipped quantity is
    an OUT / TRANSFER_OUT movement at the origin unit, which fails with
    StockError when the origin does not hold enough.
    """
    transfer = _locked_transfer(transfer_id)
    _require_status(transfer, TRANSFER_STATUS_APPROVED, "ship")

    overrides = _quantities_by_item(items, "shipped_quantity")
    item_ids = {item.id for item in transfer.items}
    unknown = sorted(set(overrides) - item_ids)
    if unknown:
        raise NotFoundError(f"Item {unknown[0]} not found in transfer {transfer.id}")

    for item in transfer.items:
        shipped = overrides.get(item.id, item.requested_quantity)
        item.shipped_quantity = shipped
        if shipped == 0:
            continue
        stock_service.record_movement(
            product_id=item.product_id,
            variant_id=item.variant_id,
            unit_id=transfer.from_unit_id,
            type=MOVEMENT_OUT,
            reason=REASON_TRANSFER_OUT,
            quantity=shipped,
            reference_type="TRANSFER",
            reference_id=transfer.id,
            notes=f"Transfer {transfer.transfer_number} to unit {transfer.to_unit_id}",
            user_id=user_id,
        )

    if not any(item.shipped_quantity for item in transfer.items):
        raise ValidationError("Nothing to ship")

    transfer.status = TRANSFER_STATUS_SHIPPED
    transfer.shipped_by_user_id = user_id
    transfer.shipped_at = utcnow()
    db.session.flush()

    append_audit_event(
        action="transfer.shipped",
        entity_type="transfer",
        entity_id=transfer.id,
        user_id=user_id,
        details={"shipped": {item.id: item.shipped_quantity for item in transfer.items}},
    )
    return transfer


def receive_transfer(
    *,
    transfer_id: int,
    user_id: int,
    items: list[dict],
) -> StockTransfer:
    """
    Receive a shipped transfer at the destination unit.

    items: [{item_id, received_quantity}] for every item. The received
    quantity is the authoritative delta (it may be lower than shipped, e.g.
    damage in transit); a positive one is an IN / TRANSFER_IN movement.
    """
    transfer = _locked_transfer(transfer_id)
    _require_status(transfer, TRANSFER_STATUS_SHIPPED, "receive")

    received = _quantities_by_item(require_items(items), "received_quantity")
    items_by_id = {item.id: item for item in transfer.items}
    unknown = sorted(set(received) - items_by_id.keys())
    if unknown:
        raise NotFoundError(f"Item {unknown[0]} not found in transfer {transfer.id}")
    missing = sorted(items_by_id.keys() - set(received))
    if missing:
        raise ValidationError(f"received_quantity missing for item {missing[0]}")

    for item_id, quantity in received.items():
        item = items_by_id[item_id]
        if quantity > (item.shipped_quantity or 0):
            raise ValidationError(
                f"Item {item.id}: received {quantity} exceeds shipped {item.shipped_quantity or 0}"
            )
        item.received_quantity = quantity
        if quantity == 0:
            continue
        stock_service.record_movement(
            product_id=item.product_id,
            variant_id=item.variant_id,
            unit_id=transfer.to_unit_id,
            type=MOVEMENT_IN,
            reason=REASON_TRANSFER_IN,
            quantity=quantity,
            reference_type="TRANSFER",
            reference_id=transfer.id,
            notes=f"Transfer {transfer.transfer_number} from unit {transfer.from_unit_id}",
            user_id=user_id,
        )

    transfer.status = TRANSFER_STATUS_RECEIVED
    transfer.received_by_user_id = user_id
    transfer.received_at = utcnow()
    db.session.flush()

    append_audit_event(
        action="transfer.received",
        entity_type="transfer",
        entity_id=transfer.id,
        user_id=user_id,
        details={"received": {item.id: item.received_quantity for item in transfer.items}},
    )
    return transfer


def cancel_transfer(*, transfer_id: int, user_id: int, reason: str | None = None) -> StockTransfer:
    """Cancel a transfer that has not shipped yet. No stock effect."""
    transfer = _locked_transfer(transfer_id)
    if transfer.status not in CANCELLABLE_STATUSES:
        raise TransferStateError(f"Cannot cancel transfer in {transfer.status} status")

    transfer.status = TRANSFER_STATUS_CANCELLED
    transfer.cancelled_by_user_id = user_id
    transfer.cancelled_at = utcnow()
    if reason:
        transfer.notes = f"{transfer.notes}\nCancelled: {reason}" if transfer.notes else f"Cancelled: {reason}"
    db.session.flush()

    append_audit_event(
        action="transfer.cancelled",
        entity_type="transfer",
        entity_id=transfer.id,
        user_id=user_id,
        details={"reason": reason} if reason else None,
    )
    return transfer


def get_transfer(transfer_id: int) -> StockTransfer:
    transfer = db.session.get(StockTransfer, transfer_id)
    if not transfer:
        raise NotFoundError(f"Transfer {transfer_id} not found")
    return transfer


def list_transfers(
    *,
    from_unit_id: int | None = None,
    to_unit_id: int | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[StockTransfer]:
    query = db.session.query(StockTransfer)
    if from_unit_id is not None:
        query = query.filter(StockTransfer.from_unit_id == from_unit_id)
    if to_unit_id is not None:
        query = query.filter(StockTransfer.to_unit_id == to_unit_id)
    if status:
        query = query.filter(StockTransfer.status == status)
    if start:
        query = query.filter(StockTransfer.requested_at >= start)
    if end:
        query = query.filter(StockTransfer.requested_at <= end)
    return query.order_by(StockTransfer.requested_at.desc(), StockTransfer.id.desc()).all()


def serialize_transfers(transfers: list[StockTransfer], include_items: bool = False) -> list[dict]:
    """to_dict plus unit names, looked up once for the whole list."""
    unit_ids = {t.from_unit_id for t in transfers} | {t.to_unit_id for t in transfers}
    units = {
        u.id: u for u in db.session.query(StoreUnit).filter(StoreUnit.id.in_(unit_ids)).all()
    } if unit_ids else {}
    result = []
    for transfer in transfers:
        data = transfer.to_dict(include_items=include_items)
        from_unit = units.get(transfer.from_unit_id)
        to_unit = units.get(transfer.to_unit_id)
        data["from_unit_name"] = from_unit.name if from_unit else None
        data["to_unit_name"] = to_unit.name if to_unit else None
        result.append(data)
    return result
