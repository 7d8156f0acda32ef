from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_utc_z, utcnow


PO_STATUS_DRAFT = "DRAFT"
PO_STATUS_PENDING = "PENDING"
PO_STATUS_APPROVED = "APPROVED"
PO_STATUS_ORDERED = "ORDERED"
PO_STATUS_PARTIAL = "PARTIAL"
PO_STATUS_RECEIVED = "RECEIVED"
PO_STATUS_CANCELLED = "CANCELLED"
PURCHASE_ORDER_STATUSES = {
    PO_STATUS_DRAFT,
    PO_STATUS_PENDING,
    PO_STATUS_APPROVED,
    PO_STATUS_ORDERED,
    PO_STATUS_PARTIAL,
    PO_STATUS_RECEIVED,
    PO_STATUS_CANCELLED,
}

SO_STATUS_DRAFT = "DRAFT"
SO_STATUS_PENDING = "PENDING"
SO_STATUS_CONFIRMED = "CONFIRMED"
SO_STATUS_PROCESSING = "PROCESSING"
SO_STATUS_SHIPPED = "SHIPPED"
SO_STATUS_DELIVERED = "DELIVERED"
SO_STATUS_CANCELLED = "CANCELLED"
SO_STATUS_RETURNED = "RETURNED"
SALES_ORDER_STATUSES = {
    SO_STATUS_DRAFT,
    SO_STATUS_PENDING,
    SO_STATUS_CONFIRMED,
    SO_STATUS_PROCESSING,
    SO_STATUS_SHIPPED,
    SO_STATUS_DELIVERED,
    SO_STATUS_CANCELLED,
    SO_STATUS_RETURNED,
}

# Orders that count as revenue in reports and analytics
COUNTED_SALES_STATUSES = (
    SO_STATUS_CONFIRMED,
    SO_STATUS_PROCESSING,
    SO_STATUS_SHIPPED,
    SO_STATUS_DELIVERED,
)

SALES_PAYMENT_METHODS = {"CASH", "CREDIT", "DEBIT", "PIX", "TRANSFER", "INSTALLMENT"}

PAYMENT_STATUS_PENDING = "PENDING"
PAYMENT_STATUS_PARTIAL = "PARTIAL"
PAYMENT_STATUS_PAID = "PAID"
PAYMENT_STATUS_REFUNDED = "REFUNDED"
PAYMENT_STATUSES = {
    PAYMENT_STATUS_PENDING,
    PAYMENT_STATUS_PARTIAL,
    PAYMENT_STATUS_PAID,
    PAYMENT_STATUS_REFUNDED,
}


class DocumentSequence(db.Model):
    """
    Atomic per-prefix document counters (PV, PC, TR, DV).

    Incremented with a single UPDATE inside the transaction that inserts the
    numbered row, so two concurrent requests can never share a number.
    """
    __tablename__ = "document_sequences"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    prefix = db.Column(db.String(16), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "prefix": self.prefix,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class PurchaseOrder(db.Model):
    """
    Purchase order from a supplier.

    LIFECYCLE:
    DRAFT -> PENDING -> APPROVED -> ORDERED -> PARTIAL -> RECEIVED
    CANCELLED from DRAFT, PENDING or APPROVED.
    PARTIAL / RECEIVED are only reached through order_service.receive_purchase_order.
    """
    __tablename__ = "purchase_orders"
    __table_args__ = (
        db.Index("ix_purchase_orders_supplier_status", "supplier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True)

    status = db.Column(
        db.String(16), nullable=False, default=PO_STATUS_DRAFT, index=True,
        info={"choices": PURCHASE_ORDER_STATUSES},
    )

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    received_date = db.Column(db.DateTime(timezone=True), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "PurchaseOrderItem",
        backref="purchase_order",
        order_by="PurchaseOrderItem.id",
        lazy=True,
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "supplier_id": self.supplier_id,
            "unit_id": self.unit_id,
            "status": self.status,
            "order_date": to_utc_z(self.order_date),
            "expected_date": to_utc_z(self.expected_date),
            "received_date": to_utc_z(self.received_date),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class PurchaseOrderItem(db.Model):
    __tablename__ = "purchase_order_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    purchase_order_id = db.Column(db.Integer, db.ForeignKey("purchase_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    received_quantity = db.Column(db.Integer, nullable=False, default=0)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cost_cents = db.Column(db.Integer, nullable=False)

    @property
    def pending_quantity(self) -> int:
        return max(self.quantity - (self.received_quantity or 0), 0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_order_id": self.purchase_order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "received_quantity": self.received_quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "discount_cents": self.discount_cents,
            "total_cost_cents": self.total_cost_cents,
        }


class SalesOrder(db.Model):
    """
    Customer sales order.

    LIFECYCLE:
    DRAFT -> PENDING -> CONFIRMED -> PROCESSING -> SHIPPED -> DELIVERED -> RETURNED
    CANCELLED from DRAFT or PENDING.
    Entering CONFIRMED creates the AccountReceivable for the order total.
    """
    __tablename__ = "sales_orders"
    __table_args__ = (
        db.Index("ix_sales_orders_status_date", "status", "order_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True, index=True)

    status = db.Column(
        db.String(16), nullable=False, default=SO_STATUS_DRAFT,
        info={"choices": SALES_ORDER_STATUSES},
    )

    order_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    shipping_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_method = db.Column(db.String(16), nullable=True, info={"choices": SALES_PAYMENT_METHODS})
    payment_status = db.Column(
        db.String(16), nullable=False, default=PAYMENT_STATUS_PENDING,
        info={"choices": PAYMENT_STATUSES},
    )

    notes = db.Column(db.Text, nullable=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "SalesOrderItem",
        backref="sales_order",
        order_by="SalesOrderItem.id",
        lazy=True,
    )

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "unit_id": self.unit_id,
            "status": self.status,
            "order_date": to_utc_z(self.order_date),
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "shipping_cents": self.shipping_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "confirmed_at": to_utc_z(self.confirmed_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SalesOrderItem(db.Model):
    __tablename__ = "sales_order_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_price_cents = db.Column(db.Integer, nullable=False)

    # Product cost at order time (CMV source)
    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sales_order_id": self.sales_order_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "total_price_cents": self.total_price_cents,
            "unit_cost_cents": self.unit_cost_cents,
        }
