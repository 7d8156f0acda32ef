# Overview: Stock ledger: append movements, maintain stock caches, raise threshold alerts.

"""
Stock Ledger Service

The stock_movements table is the source of truth for every quantity change.
Two caches mirror it and are written only here, inside the transaction that
appends the movement and under a row lock:

- product level (unit_id NULL): Product.current_stock
- unit level (unit_id set): UnitStock.quantity for (unit, product, variant)

INVARIANTS:
- new_stock = previous_stock + quantity (IN), - quantity (OUT), = quantity (ADJUSTMENT)
- previous_stock / new_stock are captured once and never recomputed
- stock never goes negative: an OUT beyond the available quantity raises StockError
- alert evaluation runs in the same transaction as the movement

Services only flush; the caller (route) commits.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..extensions import db
from ..models import Product, ProductVariant, StockAlert, StockMovement, StoreUnit, UnitStock
from ..models.stock import (
    ALERT_HIGH_STOCK,
    ALERT_LOW_STOCK,
    ALERT_OUT_OF_STOCK,
    MOVEMENT_ADJUSTMENT,
    MOVEMENT_IN,
    MOVEMENT_OUT,
    MOVEMENT_REASONS,
    MOVEMENT_TYPES,
)
from ..validation import ConflictError, NotFoundError, ValidationError, coerce_int, enforce_amount_cents
from .concurrency import get_for_update, lock_for_update
from .audit_service import append_audit_event
from .notification_service import notify_owner
from erp.time_utils import utcnow


logger = logging.getLogger(__name__)


SCOPE_PRODUCT = "product"
SCOPE_UNIT = "unit"


class StockError(ConflictError):
    """Raised when a movement would drive stock below zero."""
    pass


def compute_new_stock(movement_type: str, previous_stock: int, quantity: int) -> int:
    if movement_type == MOVEMENT_IN:
        return previous_stock + quantity
    if movement_type == MOVEMENT_OUT:
        return previous_stock - quantity
    if movement_type == MOVEMENT_ADJUSTMENT:
        return quantity
    raise ValidationError(f"type must be one of: {', '.join(sorted(MOVEMENT_TYPES))}")


def _validate_quantity(movement_type: str, quantity) -> int:
    quantity = coerce_int(quantity, "quantity")
    if movement_type == MOVEMENT_ADJUSTMENT:
        if quantity < 0:
            raise ValidationError("quantity must be >= 0 for ADJUSTMENT")
    elif quantity <= 0:
        raise ValidationError("quantity must be > 0")
    return quantity


def locked_unit_stock(unit_id: int, product_id: int, variant_id: int | None) -> UnitStock:
    """Lock the (unit, product, variant) cache row, creating it at 0 on first touch."""
    row = lock_for_update(
        db.session.query(UnitStock).filter_by(
            unit_id=unit_id,
            product_id=product_id,
            variant_id=variant_id,
        )
    ).first()
    if row is None:
        row = UnitStock(unit_id=unit_id, product_id=product_id, variant_id=variant_id, quantity=0)
        db.session.add(row)
        db.session.flush()
    return row


def get_unit_quantity(unit_id: int, product_id: int, variant_id: int | None = None) -> int:
    row = db.session.query(UnitStock.quantity).filter_by(
        unit_id=unit_id,
        product_id=product_id,
        variant_id=variant_id,
    ).scalar()
    return row or 0


def record_movement(
    *,
    product_id: int,
    type: str,
    reason: str,
    quantity: int,
    unit_id: int | None = None,
    variant_id: int | None = None,
    unit_cost_cents: int | None = None,
    reference_type: str | None = None,
    reference_id: int | None = None,
    batch: str | None = None,
    notes: str | None = None,
    user_id: int | None = None,
) -> StockMovement:
    """
    Append one movement to the ledger and update the matching stock cache.

    Args:
        product_id: Product moved (NotFoundError when absent)
        type: IN, OUT or ADJUSTMENT
        reason: PURCHASE, SALE, RETURN, ... (see MOVEMENT_REASONS)
        quantity: > 0 for IN/OUT, absolute new level (>= 0) for ADJUSTMENT
        unit_id: When given, the movement is unit-level (UnitStock cache)
        variant_id: Optional variant; at product level its stock moves by the same delta
        unit_cost_cents: Optional unit cost; total_cost_cents = unit_cost * quantity

    Returns:
        StockMovement: the flushed ledger row

    Raises:
        ValidationError: bad type/reason/quantity, variant of another product
        NotFoundError: product, variant or unit absent
        StockError: the movement would make stock negative
    """
    if type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(sorted(MOVEMENT_TYPES))}")
    if reason not in MOVEMENT_REASONS:
        raise ValidationError(f"reason must be one of: {', '.join(sorted(MOVEMENT_REASONS))}")
    quantity = _validate_quantity(type, quantity)
    if unit_cost_cents is not None:
        unit_cost_cents = coerce_int(unit_cost_cents, "unit_cost_cents")
        enforce_amount_cents(unit_cost_cents, "unit_cost_cents")

    product = get_for_update(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")

    variant = None
    if variant_id is not None:
        variant = get_for_update(ProductVariant, variant_id)
        if not variant:
            raise NotFoundError(f"Variant {variant_id} not found")
        if variant.product_id != product.id:
            raise ValidationError(f"Variant {variant_id} does not belong to product {product_id}")

    if unit_id is not None:
        if not db.session.get(StoreUnit, unit_id):
            raise NotFoundError(f"Store unit {unit_id} not found")
        cache = locked_unit_stock(unit_id, product.id, variant_id)
        previous_stock = cache.quantity
    else:
        cache = None
        previous_stock = product.current_stock or 0

    new_stock = compute_new_stock(type, previous_stock, quantity)
    if new_stock < 0:
        raise StockError(
            f"Insufficient stock for product {product.id}"
            f"{f' at unit {unit_id}' if unit_id is not None else ''}. "
            f"Available: {previous_stock}, requested: {quantity}"
        )

    if cache is not None:
        cache.quantity = new_stock
        min_stock, max_stock = cache.min_stock, cache.max_stock
    else:
        product.current_stock = new_stock
        min_stock, max_stock = product.min_stock, product.max_stock
        if variant is not None:
            variant_stock = (variant.stock or 0) + (new_stock - previous_stock)
            if variant_stock < 0:
                raise StockError(
                    f"Insufficient stock for variant {variant.id}. "
                    f"Available: {variant.stock or 0}, requested: {quantity}"
                )
            variant.stock = variant_stock

    movement = StockMovement(
        product_id=product.id,
        variant_id=variant_id,
        unit_id=unit_id,
        type=type,
        reason=reason,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        unit_cost_cents=unit_cost_cents,
        total_cost_cents=unit_cost_cents * quantity if unit_cost_cents is not None else None,
        reference_type=reference_type,
        reference_id=reference_id,
        batch=batch,
        notes=notes,
        user_id=user_id,
        created_at=utcnow(),
    )
    db.session.add(movement)
    db.session.flush()

    check_stock_alerts(
        product_id=product.id,
        unit_id=unit_id,
        current_stock=new_stock,
        min_stock=min_stock,
        max_stock=max_stock,
    )

    return movement


def check_stock_alerts(
    *,
    product_id: int,
    unit_id: int | None,
    current_stock: int,
    min_stock: int,
    max_stock: int,
) -> StockAlert | None:
    """
    Raise at most one alert for the new stock level.

    Zero stock is OUT_OF_STOCK, <= min is LOW_STOCK, >= max is HIGH_STOCK.
    Nothing is created while an unread alert of the same type exists for
    the same product and unit.
    """
    if current_stock == 0:
        alert_type, threshold = ALERT_OUT_OF_STOCK, 0
    elif current_stock <= (min_stock or 0):
        alert_type, threshold = ALERT_LOW_STOCK, min_stock or 0
    elif max_stock is not None and current_stock >= max_stock:
        alert_type, threshold = ALERT_HIGH_STOCK, max_stock
    else:
        return None

    existing = db.session.query(StockAlert.id).filter_by(
        product_id=product_id,
        unit_id=unit_id,
        alert_type=alert_type,
        is_read=False,
    ).first()
    if existing:
        return None

    alert = StockAlert(
        product_id=product_id,
        unit_id=unit_id,
        alert_type=alert_type,
        current_stock=current_stock,
        threshold=threshold,
        created_at=utcnow(),
    )
    db.session.add(alert)
    db.session.flush()
    return alert


def list_movements(
    *,
    product_id: int | None = None,
    unit_id: int | None = None,
    variant_id: int | None = None,
    movement_type: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    scope: str | None = None,
    limit: int = 100,
) -> list[StockMovement]:
    """List movements newest first. scope="product" / "unit" restricts to one ledger level."""
    query = db.session.query(StockMovement)
    if scope == SCOPE_PRODUCT:
        query = query.filter(StockMovement.unit_id.is_(None))
    elif scope == SCOPE_UNIT:
        query = query.filter(StockMovement.unit_id.isnot(None))
    if product_id is not None:
        query = query.filter(StockMovement.product_id == product_id)
    if unit_id is not None:
        query = query.filter(StockMovement.unit_id == unit_id)
    if variant_id is not None:
        query = query.filter(StockMovement.variant_id == variant_id)
    if movement_type:
        query = query.filter(StockMovement.type == movement_type)
    if start:
        query = query.filter(StockMovement.created_at >= start)
    if end:
        query = query.filter(StockMovement.created_at <= end)
    limit = min(max(limit, 1), 1000)
    return query.order_by(StockMovement.created_at.desc(), StockMovement.id.desc()).limit(limit).all()


def list_alerts(*, unread_only: bool = False, limit: int = 100) -> list[StockAlert]:
    query = db.session.query(StockAlert)
    if unread_only:
        query = query.filter(StockAlert.is_read.is_(False))
    limit = min(max(limit, 1), 500)
    return query.order_by(StockAlert.created_at.desc(), StockAlert.id.desc()).limit(limit).all()


def mark_alert_read(alert_id: int) -> StockAlert:
    alert = db.session.get(StockAlert, alert_id)
    if not alert:
        raise NotFoundError(f"Alert {alert_id} not found")
    alert.is_read = True
    db.session.flush()
    return alert


def send_alert_notification(alert_id: int) -> bool:
    """
    Notify the owner about an alert.

    On delivery the alert is flagged is_notified/notified_at. A failed
    delivery leaves the alert untouched and returns False.
    """
    alert = db.session.get(StockAlert, alert_id)
    if not alert:
        raise NotFoundError(f"Alert {alert_id} not found")

    product = alert.product
    product_label = f"{product.name} ({product.code})" if product else f"product {alert.product_id}"
    title = f"Stock alert: {alert.alert_type.replace('_', ' ').lower()}"
    content = (
        f"{product_label} is at {alert.current_stock} units "
        f"(threshold {alert.threshold})"
        f"{f' in unit {alert.unit_id}' if alert.unit_id else ''}."
    )

    if not notify_owner(title, content):
        logger.info("Alert %s left unnotified", alert.id)
        return False

    alert.is_notified = True
    alert.notified_at = utcnow()
    db.session.flush()
    return True


def add_manual_movement(*, user_id: int | None = None, **kwargs) -> StockMovement:
    """Record a movement entered by an operator and audit it."""
    movement = record_movement(user_id=user_id, **kwargs)
    append_audit_event(
        action="stock.movement_recorded",
        entity_type="stock_movement",
        entity_id=movement.id,
        user_id=user_id,
        details={
            "product_id": movement.product_id,
            "unit_id": movement.unit_id,
            "type": movement.type,
            "reason": movement.reason,
            "quantity": movement.quantity,
            "previous_stock": movement.previous_stock,
            "new_stock": movement.new_stock,
        },
    )
    return movement
