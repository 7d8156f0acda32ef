# Overview: Purchase and sales orders: creation, numbering, status transitions, receiving.

"""
Order Engine

Creation persists the header and every item in the caller's transaction,
with the order number allocated from the same transaction. Status changes
are validated against explicit transition maps; the side effects of a
transition (receivable, customer statistics, stock movements) are applied
in the same transaction as the status change.

PURCHASE ORDER LIFECYCLE:
DRAFT -> PENDING | CANCELLED
PENDING -> APPROVED | CANCELLED
APPROVED -> ORDERED | CANCELLED
APPROVED / ORDERED / PARTIAL -> PARTIAL | RECEIVED (receive only)

SALES ORDER LIFECYCLE:
DRAFT -> PENDING | CONFIRMED | CANCELLED
PENDING -> CONFIRMED | CANCELLED
CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED -> RETURNED
"""

from __future__ import annotations

import logging
from datetime import datetime

from flask import current_app

from ..extensions import db
from ..models import (
    AccountReceivable,
    Customer,
    Product,
    ProductVariant,
    PurchaseOrder,
    PurchaseOrderItem,
    SalesOrder,
    SalesOrderItem,
    StoreUnit,
    Supplier,
)
from ..models.catalog import CUSTOMER_SEGMENT_REGULAR, CUSTOMER_SEGMENT_VIP
from ..models.finance import ACCOUNT_STATUS_PENDING, RECEIVABLE_PAYMENT_METHODS
from ..models.orders import (
    PO_STATUS_APPROVED,
    PO_STATUS_CANCELLED,
    PO_STATUS_DRAFT,
    PO_STATUS_ORDERED,
    PO_STATUS_PARTIAL,
    PO_STATUS_PENDING,
    PO_STATUS_RECEIVED,
    PURCHASE_ORDER_STATUSES,
    SALES_ORDER_STATUSES,
    SALES_PAYMENT_METHODS,
    SO_STATUS_CANCELLED,
    SO_STATUS_CONFIRMED,
    SO_STATUS_DELIVERED,
    SO_STATUS_DRAFT,
    SO_STATUS_PENDING,
    SO_STATUS_PROCESSING,
    SO_STATUS_RETURNED,
    SO_STATUS_SHIPPED,
)
from ..models.stock import MOVEMENT_IN, MOVEMENT_OUT, REASON_PURCHASE, REASON_SALE
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
from .document_service import PREFIX_PURCHASE_ORDER, PREFIX_SALES_ORDER, next_document_number
from erp.time_utils import utcnow


logger = logging.getLogger(__name__)


PURCHASE_TRANSITIONS = {
    PO_STATUS_DRAFT: {PO_STATUS_PENDING, PO_STATUS_CANCELLED},
    PO_STATUS_PENDING: {PO_STATUS_APPROVED, PO_STATUS_CANCELLED},
    PO_STATUS_APPROVED: {PO_STATUS_ORDERED, PO_STATUS_CANCELLED},
    PO_STATUS_ORDERED: set(),
    PO_STATUS_PARTIAL: set(),
    PO_STATUS_RECEIVED: set(),
    PO_STATUS_CANCELLED: set(),
}
RECEIVABLE_PO_STATUSES = {PO_STATUS_APPROVED, PO_STATUS_ORDERED, PO_STATUS_PARTIAL}

SALES_TRANSITIONS = {
    SO_STATUS_DRAFT: {SO_STATUS_PENDING, SO_STATUS_CONFIRMED, SO_STATUS_CANCELLED},
    SO_STATUS_PENDING: {SO_STATUS_CONFIRMED, SO_STATUS_CANCELLED},
    SO_STATUS_CONFIRMED: {SO_STATUS_PROCESSING},
    SO_STATUS_PROCESSING: {SO_STATUS_SHIPPED},
    SO_STATUS_SHIPPED: {SO_STATUS_DELIVERED},
    SO_STATUS_DELIVERED: {SO_STATUS_RETURNED},
    SO_STATUS_CANCELLED: set(),
    SO_STATUS_RETURNED: set(),
}

# Customer segmentation thresholds
VIP_TOTAL_PURCHASES_CENTS = 1_000_000
REGULAR_PURCHASE_COUNT = 5


class OrderStateError(ConflictError):
    """Raised when an order transition is not allowed from its current status."""
    pass


def _money(value, name: str) -> int:
    if value is None:
        return 0
    cents = coerce_int(value, name)
    enforce_amount_cents(cents, name)
    return cents


def _load_products(items: list[dict]) -> tuple[dict[int, Product], dict[int, ProductVariant]]:
    """Resolve every product/variant referenced by the items with two batched queries."""
    product_ids = set()
    variant_ids = set()
    for item in items:
        product_ids.add(require_positive_int(item.get("product_id"), "product_id"))
        variant_id = optional_int(item.get("variant_id"), "variant_id")
        if variant_id is not None:
            variant_ids.add(variant_id)

    products = {p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()}
    missing = sorted(product_ids - products.keys())
    if missing:
        raise NotFoundError(f"Product {missing[0]} not found")

    variants = {}
    if variant_ids:
        variants = {
            v.id: v for v in db.session.query(ProductVariant).filter(ProductVariant.id.in_(variant_ids)).all()
        }
        missing = sorted(variant_ids - variants.keys())
        if missing:
            raise NotFoundError(f"Variant {missing[0]} not found")

    return products, variants


def _check_variant(variants: dict, variant_id: int | None, product_id: int) -> None:
    if variant_id is not None and variants[variant_id].product_id != product_id:
        raise ValidationError(f"Variant {variant_id} does not belong to product {product_id}")


def _check_unit(unit_id: int | None) -> None:
    if unit_id is not None and not db.session.get(StoreUnit, unit_id):
        raise NotFoundError(f"Store unit {unit_id} not found")


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------

def create_purchase_order(
    *,
    supplier_id: int,
    items: list[dict],
    user_id: int | None = None,
    unit_id: int | None = None,
    expected_date: datetime | None = None,
    discount_cents: int | None = 0,
    shipping_cents: int | None = 0,
    notes: str | None = None,
) -> PurchaseOrder:
    """
    Create a purchase order (status DRAFT) with its items.

    Item: {product_id, variant_id?, quantity, unit_cost_cents?, discount_cents?}
    unit_cost_cents defaults to the product cost price.
    total = subtotal - discount + shipping.
    """
    items = require_items(items)
    supplier_id = require_positive_int(supplier_id, "supplier_id")
    if not db.session.get(Supplier, supplier_id):
        raise NotFoundError(f"Supplier {supplier_id} not found")
    _check_unit(unit_id)

    products, variants = _load_products(items)
    discount_cents = _money(discount_cents, "discount_cents")
    shipping_cents = _money(shipping_cents, "shipping_cents")

    order = PurchaseOrder(
        order_number=next_document_number(PREFIX_PURCHASE_ORDER),
        supplier_id=supplier_id,
        unit_id=unit_id,
        status=PO_STATUS_DRAFT,
        order_date=utcnow(),
        expected_date=expected_date,
        notes=notes,
        created_by_user_id=user_id,
    )
    db.session.add(order)
    db.session.flush()

    subtotal = 0
    for item in items:
        product_id = int(item["product_id"])
        variant_id = optional_int(item.get("variant_id"), "variant_id")
        _check_variant(variants, variant_id, product_id)
        quantity = require_positive_int(item.get("quantity"), "quantity")
        unit_cost = item.get("unit_cost_cents")
        unit_cost = products[product_id].cost_price_cents if unit_cost is None else _money(unit_cost, "unit_cost_cents")
        discount = _money(item.get("discount_cents"), "discount_cents")
        line_total = unit_cost * quantity - discount
        if line_total < 0:
            raise ValidationError("Item discount cannot exceed the item amount")

        db.session.add(PurchaseOrderItem(
            purchase_order_id=order.id,
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            received_quantity=0,
            unit_cost_cents=unit_cost,
            discount_cents=discount,
            total_cost_cents=line_total,
        ))
        subtotal += line_total

    total = subtotal - discount_cents + shipping_cents
    if total < 0:
        raise ValidationError("Order discount cannot exceed the order amount")
    order.subtotal_cents = subtotal
    order.discount_cents = discount_cents
    order.shipping_cents = shipping_cents
    order.total_cents = total
    db.session.flush()

    append_audit_event(
        action="purchase_order.created",
        entity_type="purchase_order",
        entity_id=order.id,
        user_id=user_id,
        details={"order_number": order.order_number, "total_cents": total, "items": len(items)},
    )
    return order


def list_purchase_orders(*, supplier_id: int | None = None, status: str | None = None) -> list[PurchaseOrder]:
    query = db.session.query(PurchaseOrder)
    if supplier_id is not None:
        query = query.filter(PurchaseOrder.supplier_id == supplier_id)
    if status:
        query = query.filter(PurchaseOrder.status == status)
    return query.order_by(PurchaseOrder.order_date.desc(), PurchaseOrder.id.desc()).all()


def get_purchase_order(order_id: int) -> PurchaseOrder:
    order = db.session.get(PurchaseOrder, order_id)
    if not order:
        raise NotFoundError(f"Purchase order {order_id} not found")
    return order


def serialize_purchase_orders(orders: list[PurchaseOrder]) -> list[dict]:
    supplier_ids = {o.supplier_id for o in orders}
    suppliers = {
        s.id: s for s in db.session.query(Supplier).filter(Supplier.id.in_(supplier_ids)).all()
    } if supplier_ids else {}
    result = []
    for order in orders:
        data = order.to_dict()
        supplier = suppliers.get(order.supplier_id)
        data["supplier_name"] = supplier.name if supplier else None
        result.append(data)
    return result


def update_purchase_order_status(*, order_id: int, status: str, user_id: int | None = None) -> PurchaseOrder:
    require_choice(status, PURCHASE_ORDER_STATUSES, "status")
    order = get_for_update(PurchaseOrder, order_id)
    if not order:
        raise NotFoundError(f"Purchase order {order_id} not found")

    if status in (PO_STATUS_PARTIAL, PO_STATUS_RECEIVED):
        raise OrderStateError("Use receive to register received goods")
    if status not in PURCHASE_TRANSITIONS.get(order.status, set()):
        raise OrderStateError(f"Cannot change purchase order from {order.status} to {status}")

    previous = order.status
    order.status = status
    db.session.flush()

    append_audit_event(
        action="purchase_order.status_changed",
        entity_type="purchase_order",
        entity_id=order.id,
        user_id=user_id,
        details={"from": previous, "to": status},
    )
    return order


def receive_purchase_order(*, order_id: int, receipts: list[dict], user_id: int | None = None) -> PurchaseOrder:
    """
    Register received quantities and bring the goods into stock.

    receipts: [{item_id, received_quantity}], received_quantity being the
    amount arriving now. Each positive receipt is added to the item's
    received_quantity (never beyond the ordered quantity) and recorded as an
    IN / PURCHASE movement, at the order's unit when it has one.
    Status becomes RECEIVED when every item is complete, else PARTIAL.
    """
    receipts = require_items(receipts, "items")
    order = get_for_update(PurchaseOrder, order_id)
    if not order:
        raise NotFoundError(f"Purchase order {order_id} not found")
    if order.status not in RECEIVABLE_PO_STATUSES:
        raise OrderStateError(f"Cannot receive purchase order in {order.status} status")

    items_by_id = {item.id: item for item in order.items}
    received_any = False
    for receipt in receipts:
        item_id = require_positive_int(receipt.get("item_id"), "item_id")
        item = items_by_id.get(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found in purchase order {order.id}")

        quantity = coerce_int(receipt.get("received_quantity", 0), "received_quantity")
        if quantity < 0:
            raise ValidationError("received_quantity must be >= 0")
        if quantity == 0:
            continue
        if quantity > item.pending_quantity:
            raise ValidationError(
                f"Item {item.id}: receiving {quantity} exceeds pending quantity {item.pending_quantity}"
            )

        item.received_quantity = (item.received_quantity or 0) + quantity
        stock_service.record_movement(
            product_id=item.product_id,
            variant_id=item.variant_id,
            unit_id=order.unit_id,
            type=MOVEMENT_IN,
            reason=REASON_PURCHASE,
            quantity=quantity,
            unit_cost_cents=item.unit_cost_cents,
            reference_type="PURCHASE_ORDER",
            reference_id=order.id,
            notes=f"Purchase order {order.order_number}",
            user_id=user_id,
        )
        received_any = True

    if not received_any:
        raise ValidationError("No quantities to receive")

    previous = order.status
    if all(item.pending_quantity == 0 for item in order.items):
        order.status = PO_STATUS_RECEIVED
        order.received_date = utcnow()
    else:
        order.status = PO_STATUS_PARTIAL
    db.session.flush()

    append_audit_event(
        action="purchase_order.received",
        entity_type="purchase_order",
        entity_id=order.id,
        user_id=user_id,
        details={"from": previous, "to": order.status},
    )
    return order


# ---------------------------------------------------------------------------
# Sales orders
# ---------------------------------------------------------------------------

def create_sales_order(
    *,
    items: list[dict],
    user_id: int | None = None,
    customer_id: int | None = None,
    unit_id: int | None = None,
    discount_cents: int | None = 0,
    shipping_cents: int | None = 0,
    payment_method: str | None = None,
    notes: str | None = None,
) -> SalesOrder:
    """
    Create a sales order (status DRAFT) with its items.

    Item: {product_id, variant_id?, quantity, unit_price_cents?, discount_cents?}
    unit_price_cents defaults to the product sale price (plus the variant's
    additional price); the product cost is snapshotted for CMV.
    """
    items = require_items(items)
    if customer_id is not None and not db.session.get(Customer, customer_id):
        raise NotFoundError(f"Customer {customer_id} not found")
    _check_unit(unit_id)
    if payment_method is not None:
        require_choice(payment_method, SALES_PAYMENT_METHODS, "payment_method")

    products, variants = _load_products(items)
    discount_cents = _money(discount_cents, "discount_cents")
    shipping_cents = _money(shipping_cents, "shipping_cents")

    order = SalesOrder(
        order_number=next_document_number(PREFIX_SALES_ORDER),
        customer_id=customer_id,
        unit_id=unit_id,
        status=SO_STATUS_DRAFT,
        order_date=utcnow(),
        payment_method=payment_method,
        notes=notes,
        created_by_user_id=user_id,
    )
    db.session.add(order)
    db.session.flush()

    subtotal = 0
    for item in items:
        product_id = int(item["product_id"])
        product = products[product_id]
        variant_id = optional_int(item.get("variant_id"), "variant_id")
        _check_variant(variants, variant_id, product_id)
        quantity = require_positive_int(item.get("quantity"), "quantity")

        unit_price = item.get("unit_price_cents")
        if unit_price is None:
            unit_price = product.sale_price_cents
            if variant_id is not None:
                unit_price += variants[variant_id].additional_price_cents or 0
        else:
            unit_price = _money(unit_price, "unit_price_cents")
        discount = _money(item.get("discount_cents"), "discount_cents")
        line_total = unit_price * quantity - discount
        if line_total < 0:
            raise ValidationError("Item discount cannot exceed the item amount")

        db.session.add(SalesOrderItem(
            sales_order_id=order.id,
            product_id=product_id,
            variant_id=variant_id,
            quantity=quantity,
            unit_price_cents=unit_price,
            discount_cents=discount,
            total_price_cents=line_total,
            unit_cost_cents=product.cost_price_cents,
        ))
        subtotal += line_total

    total = subtotal - discount_cents + shipping_cents
    if total < 0:
        raise ValidationError("Order discount cannot exceed the order amount")
    order.subtotal_cents = subtotal
    order.discount_cents = discount_cents
    order.shipping_cents = shipping_cents
    order.total_cents = total
    db.session.flush()

    append_audit_event(
        action="sales_order.created",
        entity_type="sales_order",
        entity_id=order.id,
        user_id=user_id,
        details={"order_number": order.order_number, "total_cents": total, "items": len(items)},
    )
    return order


def list_sales_orders(
    *,
    customer_id: int | None = None,
    status: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
) -> list[SalesOrder]:
    query = db.session.query(SalesOrder)
    if customer_id is not None:
        query = query.filter(SalesOrder.customer_id == customer_id)
    if status:
        query = query.filter(SalesOrder.status == status)
    if start:
        query = query.filter(SalesOrder.order_date >= start)
    if end:
        query = query.filter(SalesOrder.order_date <= end)
    return query.order_by(SalesOrder.order_date.desc(), SalesOrder.id.desc()).all()


def get_sales_order(order_id: int) -> SalesOrder:
    order = db.session.get(SalesOrder, order_id)
    if not order:
        raise NotFoundError(f"Sales order {order_id} not found")
    return order


def serialize_sales_orders(orders: list[SalesOrder]) -> list[dict]:
    customer_ids = {o.customer_id for o in orders if o.customer_id is not None}
    customers = {
        c.id: c for c in db.session.query(Customer).filter(Customer.id.in_(customer_ids)).all()
    } if customer_ids else {}
    result = []
    for order in orders:
        data = order.to_dict()
        customer = customers.get(order.customer_id)
        data["customer_name"] = customer.name if customer else None
        result.append(data)
    return result


def _update_customer_stats(order: SalesOrder) -> None:
    if order.customer_id is None:
        return
    customer = get_for_update(Customer, order.customer_id)
    if customer is None:
        return
    customer.total_purchases_cents = (customer.total_purchases_cents or 0) + order.total_cents
    customer.purchase_count = (customer.purchase_count or 0) + 1
    customer.last_purchase_at = utcnow()
    if customer.total_purchases_cents >= VIP_TOTAL_PURCHASES_CENTS:
        customer.segment = CUSTOMER_SEGMENT_VIP
    elif customer.purchase_count >= REGULAR_PURCHASE_COUNT:
        customer.segment = CUSTOMER_SEGMENT_REGULAR


def _on_sales_order_confirmed(order: SalesOrder, user_id: int | None) -> None:
    now = utcnow()
    order.confirmed_at = now

    payment_method = order.payment_method if order.payment_method in RECEIVABLE_PAYMENT_METHODS else None
    receivable = AccountReceivable(
        customer_id=order.customer_id,
        sales_order_id=order.id,
        unit_id=order.unit_id,
        description=f"Venda {order.order_number}",
        category="SALES",
        amount_cents=order.total_cents,
        received_amount_cents=0,
        due_date=now,
        status=ACCOUNT_STATUS_PENDING,
        payment_method=payment_method,
        document_number=order.order_number,
        created_by_user_id=user_id,
    )
    db.session.add(receivable)

    _update_customer_stats(order)

    if current_app.config.get("SALES_CONFIRM_DECREMENTS_STOCK"):
        for item in order.items:
            stock_service.record_movement(
                product_id=item.product_id,
                variant_id=item.variant_id,
                unit_id=order.unit_id,
                type=MOVEMENT_OUT,
                reason=REASON_SALE,
                quantity=item.quantity,
                unit_cost_cents=item.unit_cost_cents,
                reference_type="SALES_ORDER",
                reference_id=order.id,
                notes=f"Sales order {order.order_number}",
                user_id=user_id,
            )
    db.session.flush()


def update_sales_order_status(*, order_id: int, status: str, user_id: int | None = None) -> SalesOrder:
    """
    Move a sales order to `status`.

    Entering CONFIRMED creates the AccountReceivable for the order total
    (due immediately) and updates the customer's purchase statistics.
    """
    require_choice(status, SALES_ORDER_STATUSES, "status")
    order = get_for_update(SalesOrder, order_id)
    if not order:
        raise NotFoundError(f"Sales order {order_id} not found")

    if status not in SALES_TRANSITIONS.get(order.status, set()):
        raise OrderStateError(f"Cannot change sales order from {order.status} to {status}")

    previous = order.status
    order.status = status
    if status == SO_STATUS_CONFIRMED:
        _on_sales_order_confirmed(order, user_id)
    db.session.flush()

    append_audit_event(
        action="sales_order.status_changed",
        entity_type="sales_order",
        entity_id=order.id,
        user_id=user_id,
        details={"from": previous, "to": status},
    )
    return order
