from __future__ import annotations

from ..extensions import db
from erp.time_utils import to_utc_z, utcnow


TRANSFER_STATUS_REQUESTED = "REQUESTED"
TRANSFER_STATUS_APPROVED = "APPROVED"
TRANSFER_STATUS_SHIPPED = "SHIPPED"
TRANSFER_STATUS_RECEIVED = "RECEIVED"
TRANSFER_STATUS_CANCELLED = "CANCELLED"
TRANSFER_STATUSES = {
    TRANSFER_STATUS_REQUESTED,
    TRANSFER_STATUS_APPROVED,
    TRANSFER_STATUS_SHIPPED,
    TRANSFER_STATUS_RECEIVED,
    TRANSFER_STATUS_CANCELLED,
}

RETURN_TYPE_RETURN = "RETURN"
RETURN_TYPE_EXCHANGE = "EXCHANGE"
RETURN_TYPES = {RETURN_TYPE_RETURN, RETURN_TYPE_EXCHANGE}

RETURN_REASONS = {"DEFECT", "WRONG_SIZE", "WRONG_COLOR", "REGRET", "DAMAGED", "OTHER"}

REFUND_METHODS = {"CASH", "CREDIT", "STORE_CREDIT", "EXCHANGE"}

RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_APPROVED = "APPROVED"
RETURN_STATUS_REJECTED = "REJECTED"
RETURN_STATUS_PROCESSED = "PROCESSED"
RETURN_STATUSES = {
    RETURN_STATUS_PENDING,
    RETURN_STATUS_APPROVED,
    RETURN_STATUS_REJECTED,
    RETURN_STATUS_PROCESSED,
}

CONDITION_NEW = "NEW"
CONDITION_USED = "USED"
CONDITION_DAMAGED = "DAMAGED"
CONDITION_DEFECTIVE = "DEFECTIVE"
ITEM_CONDITIONS = {CONDITION_NEW, CONDITION_USED, CONDITION_DAMAGED, CONDITION_DEFECTIVE}
UNSELLABLE_CONDITIONS = {CONDITION_DAMAGED, CONDITION_DEFECTIVE}


class StockTransfer(db.Model):
    """
    Inter-unit stock transfer document.

    LIFECYCLE:
    1. REQUESTED: created, awaiting approval
    2. APPROVED: approved, ready to ship
    3. SHIPPED: stock left the origin unit (OUT / TRANSFER_OUT per item)
    4. RECEIVED: stock arrived at the destination (IN / TRANSFER_IN per item)
    5. CANCELLED: cancelled before shipping, no stock effect
    """
    __tablename__ = "stock_transfers"
    __table_args__ = (
        db.Index("ix_stock_transfers_units_status", "from_unit_id", "to_unit_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_number = db.Column(db.String(32), nullable=False, unique=True)

    from_unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=False, index=True)
    to_unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=False, index=True)

    status = db.Column(
        db.String(16), nullable=False, default=TRANSFER_STATUS_REQUESTED, index=True,
        info={"choices": TRANSFER_STATUSES},
    )
    notes = db.Column(db.Text, nullable=True)

    requested_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    shipped_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    received_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancelled_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    requested_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    from_unit = db.relationship("StoreUnit", foreign_keys=[from_unit_id])
    to_unit = db.relationship("StoreUnit", foreign_keys=[to_unit_id])
    items = db.relationship("TransferItem", backref="transfer", order_by="TransferItem.id", lazy=True)

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "transfer_number": self.transfer_number,
            "from_unit_id": self.from_unit_id,
            "to_unit_id": self.to_unit_id,
            "status": self.status,
            "notes": self.notes,
            "requested_by_user_id": self.requested_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "shipped_by_user_id": self.shipped_by_user_id,
            "received_by_user_id": self.received_by_user_id,
            "cancelled_by_user_id": self.cancelled_by_user_id,
            "requested_at": to_utc_z(self.requested_at),
            "approved_at": to_utc_z(self.approved_at),
            "shipped_at": to_utc_z(self.shipped_at),
            "received_at": to_utc_z(self.received_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class TransferItem(db.Model):
    __tablename__ = "transfer_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transfer_id = db.Column(db.Integer, db.ForeignKey("stock_transfers.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    requested_quantity = db.Column(db.Integer, nullable=False)
    shipped_quantity = db.Column(db.Integer, nullable=True)
    received_quantity = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_id": self.transfer_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "requested_quantity": self.requested_quantity,
            "shipped_quantity": self.shipped_quantity,
            "received_quantity": self.received_quantity,
            "notes": self.notes,
        }


class Return(db.Model):
    """
    Customer return / exchange document.

    LIFECYCLE:
    PENDING -> APPROVED -> PROCESSED
    PENDING -> REJECTED
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.Index("ix_returns_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False, unique=True)

    sales_order_id = db.Column(db.Integer, db.ForeignKey("sales_orders.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("store_units.id"), nullable=True, index=True)

    type = db.Column(db.String(16), nullable=False, info={"choices": RETURN_TYPES})
    reason = db.Column(db.String(16), nullable=False, info={"choices": RETURN_REASONS})
    reason_details = db.Column(db.Text, nullable=True)

    status = db.Column(
        db.String(16), nullable=False, default=RETURN_STATUS_PENDING,
        info={"choices": RETURN_STATUSES},
    )

    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_method = db.Column(db.String(16), nullable=True, info={"choices": REFUND_METHODS})
    notes = db.Column(db.Text, nullable=True)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    processed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    items = db.relationship("ReturnItem", backref="return_doc", order_by="ReturnItem.id", lazy=True)

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "return_number": self.return_number,
            "sales_order_id": self.sales_order_id,
            "customer_id": self.customer_id,
            "unit_id": self.unit_id,
            "type": self.type,
            "reason": self.reason,
            "reason_details": self.reason_details,
            "status": self.status,
            "refund_amount_cents": self.refund_amount_cents,
            "refund_method": self.refund_method,
            "notes": self.notes,
            "created_by_user_id": self.created_by_user_id,
            "approved_by_user_id": self.approved_by_user_id,
            "processed_by_user_id": self.processed_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at),
            "rejected_at": to_utc_z(self.rejected_at),
            "processed_at": to_utc_z(self.processed_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    condition = db.Column(db.String(16), nullable=False, default=CONDITION_USED, info={"choices": ITEM_CONDITIONS})
    restocked = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "condition": self.condition,
            "restocked": self.restocked,
            "notes": self.notes,
        }
