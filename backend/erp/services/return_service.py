# Overview: Customer returns and exchanges: intake, approval, processing with restock and refund.

"""
Returns workflow.

LIFECYCLE:
PENDING -> APPROVED -> PROCESSED
PENDING -> REJECTED

Processing may bring items back into stock (IN / RETURN, or EXCHANGE for
exchanges) at the return's unit, or at product level when the return has
no unit. Items graded DAMAGED or DEFECTIVE stay out of sellable stock
unless RESTOCK_DAMAGED_RETURNS is enabled.

A CASH or CREDIT refund posts an EXPENSE financial transaction (category
REFUNDS) in the same transaction as the restock.
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import Customer, FinancialTransaction, Product, ProductVariant, Return, ReturnItem, SalesOrder, StoreUnit
from ..models.documents import (
    CONDITION_USED,
    ITEM_CONDITIONS,
    REFUND_METHODS,
    RETURN_REASONS,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_PENDING,
    RETURN_STATUS_PROCESSED,
    RETURN_STATUS_REJECTED,
    RETURN_TYPE_EXCHANGE,
    RETURN_TYPES,
    UNSELLABLE_CONDITIONS,
)
from ..models.finance import TRANSACTION_EXPENSE
from ..models.stock import MOVEMENT_IN, REASON_EXCHANGE, REASON_RETURN
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_int,
    enforce_amount_cents,
    optional_int,
    require_choice,
    require_items,
    require_positive_int,
)
from . import stock_service
from .audit_service import append_audit_event
from .concurrency import get_for_update
from .document_service import PREFIX_RETURN, next_document_number
from erp.time_utils import utcnow


logger = logging.getLogger(__name__)


REFUND_CATEGORY = "REFUNDS"
# Refund methods that move money out of the business
CASH_REFUND_METHODS = {"CASH", "CREDIT"}


class ReturnStateError(ConflictError):
    """Raised when a return transition is attempted from the wrong status."""
    pass


def _locked_return(return_id: int) -> Return:
    doc = get_for_update(Return, return_id)
    if not doc:
        raise NotFoundError(f"Return {return_id} not found")
    return doc


def create_return(
    *,
    type: str,
    reason: str,
    items: list[dict],
    user_id: int | None = None,
    sales_order_id: int | None = None,
    customer_id: int | None = None,
    unit_id: int | None = None,
    reason_details: str | None = None,
    refund_amount_cents: int | None = None,
    refund_method: str | None = None,
    notes: str | None = None,
) -> Return:
    """
    Register a return (status PENDING).

    items: [{product_id, variant_id?, quantity, unit_price_cents, condition?, notes?}]
    refund_amount_cents defaults to the sum of item totals. When a sales
    order is given and no customer, the order's customer is used.
    """
    require_choice(type, RETURN_TYPES, "type")
    require_choice(reason, RETURN_REASONS, "reason")
    if refund_method is not None:
        require_choice(refund_method, REFUND_METHODS, "refund_method")
    items = require_items(items)

    if sales_order_id is not None:
        order = db.session.get(SalesOrder, sales_order_id)
        if not order:
            raise NotFoundError(f"Sales order {sales_order_id} not found")
        if customer_id is None:
            customer_id = order.customer_id
        if unit_id is None:
            unit_id = order.unit_id
    if customer_id is not None and not db.session.get(Customer, customer_id):
        raise NotFoundError(f"Customer {customer_id} not found")
    if unit_id is not None and not db.session.get(StoreUnit, unit_id):
        raise NotFoundError(f"Store unit {unit_id} not found")

    doc = Return(
        return_number=next_document_number(PREFIX_RETURN),
        sales_order_id=sales_order_id,
        customer_id=customer_id,
        unit_id=unit_id,
        type=type,
        reason=reason,
        reason_details=reason_details,
        status=RETURN_STATUS_PENDING,
        refund_method=refund_method,
        notes=notes,
        created_by_user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(doc)
    db.session.flush()

    items_total = 0
    for item in items:
        product_id = require_positive_int(item.get("product_id"), "product_id")
        if not db.session.get(Product, product_id):
            raise NotFoundError(f"Product {product_id} not found")
        variant_id = optional_int(item.get("variant_id"), "variant_id")
        if variant_id is not None:
            variant = db.session.get(ProductVariant, variant_id)
            if not variant or variant.product_id != product_id:
                raise NotFoundError(f"Variant {variant_id} not found for product {product_id}")
        quantity = require_positive_int(item.get("quantity"), "quantity")
        unit_price = coerce_int(item.get("unit_price_cents", 0), "unit_price_cents")
        enforce_amount_cents(unit_price, "unit_price_cents")
        condition = item.get("condition") or CONDITION_USED
        require_choice(condition, ITEM_CONDITIONS, "condition")

        line_total = unit_price * quantity
        db.session.add(ReturnItem(
            return_id=doc.id,
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            unit_price_cents=unit_price,
            total_price_cents=line_total,
            condition=condition,
            restocked=False,
            notes=item.get("notes"),
        ))
        items_total += line_total

    if refund_amount_cents is None:
        refund_amount_cents = items_total
    else:
        refund_amount_cents = coerce_int(refund_amount_cents, "refund_amount_cents")
        enforce_amount_cents(refund_amount_cents, "refund_amount_cents")
    doc.refund_amount_cents = refund_amount_cents
    db.session.flush()

    append_audit_event(
        action="return.created",
        entity_type="return",
        entity_id=doc.id,
        user_id=user_id,
        details={"return_number": doc.return_number, "type": type, "items": len(items)},
    )
    return doc


def approve_return(*, return_id: int, user_id: int | None = None) -> Return:
    doc = _locked_return(return_id)
    if doc.status != RETURN_STATUS_PENDING:
        raise ReturnStateError(f"Cannot approve return in {doc.status} status")

    doc.status = RETURN_STATUS_APPROVED
    doc.approved_by_user_id = user_id
    doc.approved_at = utcnow()
    db.session.flush()

    append_audit_event(action="return.approved", entity_type="return", entity_id=doc.id, user_id=user_id)
    return doc


def reject_return(*, return_id: int, user_id: int | None = None, reason: str | None = None) -> Return:
    doc = _locked_return(return_id)
    if doc.status != RETURN_STATUS_PENDING:
        raise ReturnStateError(f"Cannot reject return in {doc.status} status")

    doc.status = RETURN_STATUS_REJECTED
    doc.rejected_at = utcnow()
    if reason:
        doc.notes = f"{doc.notes}\nRejected: {reason}" if doc.notes else f"Rejected: {reason}"
    db.session.flush()

    append_audit_event(
        action="return.rejected",
        entity_type="return",
        entity_id=doc.id,
        user_id=user_id,
        details={"reason": reason} if reason else None,
    )
    return doc


def process_return(*, return_id: int, user_id: int | None = None, return_to_stock: bool = True) -> Return:
    """
    Complete an approved return.

    With return_to_stock, each sellable item becomes one IN movement with
    the item's quantity and is flagged restocked.
    """
    doc = _locked_return(return_id)
    if doc.status != RETURN_STATUS_APPROVED:
        raise ReturnStateError(f"Cannot process return in {doc.status} status")

    restock_damaged = current_app.config.get("RESTOCK_DAMAGED_RETURNS", False)
    reason = REASON_EXCHANGE if doc.type == RETURN_TYPE_EXCHANGE else REASON_RETURN

    if return_to_stock:
        for item in doc.items:
            if item.condition in UNSELLABLE_CONDITIONS and not restock_damaged:
                logger.warning(
                    "Return %s: item %s graded %s kept out of stock",
                    doc.return_number, item.id, item.condition,
                )
                continue
            stock_service.record_movement(
                product_id=item.product_id,
                variant_id=item.variant_id,
                unit_id=doc.unit_id,
                type=MOVEMENT_IN,
                reason=reason,
                quantity=item.quantity,
                reference_type="RETURN",
                reference_id=doc.id,
                notes=f"Return {doc.return_number}",
                user_id=user_id,
            )
            item.restocked = True

    now = utcnow()
    if doc.refund_method in CASH_REFUND_METHODS and doc.refund_amount_cents > 0:
        db.session.add(FinancialTransaction(
            type=TRANSACTION_EXPENSE,
            category=REFUND_CATEGORY,
            description=f"Refund {doc.return_number}",
            amount_cents=doc.refund_amount_cents,
            transaction_date=now,
            reference_type="RETURN",
            reference_id=doc.id,
            unit_id=doc.unit_id,
            payment_method=doc.refund_method,
            created_by_user_id=user_id,
        ))

    doc.status = RETURN_STATUS_PROCESSED
    doc.processed_by_user_id = user_id
    doc.processed_at = now
    db.session.flush()

    append_audit_event(
        action="return.processed",
        entity_type="return",
        entity_id=doc.id,
        user_id=user_id,
        details={
            "return_to_stock": return_to_stock,
            "restocked_items": [item.id for item in doc.items if item.restocked],
            "refund_amount_cents": doc.refund_amount_cents,
            "refund_method": doc.refund_method,
        },
    )
    return doc


def get_return(return_id: int) -> Return:
    doc = db.session.get(Return, return_id)
    if not doc:
        raise NotFoundError(f"Return {return_id} not found")
    return doc


def list_returns(
    *,
    customer_id: int | None = None,
    unit_id: int | None = None,
    type: str | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[Return]:
    query = db.session.query(Return)
    if customer_id is not None:
        query = query.filter(Return.customer_id == customer_id)
    if unit_id is not None:
        query = query.filter(Return.unit_id == unit_id)
    if type:
        query = query.filter(Return.type == type)
    if status:
        query = query.filter(Return.status == status)
    if start:
        query = query.filter(Return.created_at >= start)
    if end:
        query = query.filter(Return.created_at <= end)
    return query.order_by(Return.created_at.desc(), Return.id.desc()).all()


def serialize_returns(docs: list[Return]) -> list[dict]:
    customer_ids = {d.customer_id for d in docs if d.customer_id is not None}
    customers = {
        c.id: c for c in db.session.query(Customer).filter(Customer.id.in_(customer_ids)).all()
    } if customer_ids else {}
    result = []
    for doc in docs:
        data = doc.to_dict()
        customer = customers.get(doc.customer_id)
        data["customer_name"] = customer.name if customer else None
        result.append(data)
    return result
