# Overview: Service-layer operations for inventory, sales and dashboard reports.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import (
    AccountPayable,
    AccountReceivable,
    Product,
    SalesOrder,
    SalesOrderItem,
    StockAlert,
    StockTransfer,
    StoreUnit,
    UnitStock,
)
from ..models.documents import TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_REQUESTED, TRANSFER_STATUS_SHIPPED
from ..models.finance import ACCOUNT_STATUS_OVERDUE, ACCOUNT_STATUS_PARTIAL, ACCOUNT_STATUS_PENDING
from ..models.orders import COUNTED_SALES_STATUSES
from ..validation import NotFoundError
from erp.time_utils import month_start, previous_month_start, to_utc_z, utcnow


OPEN_ACCOUNT_STATUSES = (ACCOUNT_STATUS_PENDING, ACCOUNT_STATUS_PARTIAL, ACCOUNT_STATUS_OVERDUE)
PENDING_TRANSFER_STATUSES = (TRANSFER_STATUS_REQUESTED, TRANSFER_STATUS_APPROVED, TRANSFER_STATUS_SHIPPED)


def _product_row(product: Product) -> dict:
    return {
        "product_id": product.id,
        "code": product.code,
        "name": product.name,
        "current_stock": product.current_stock,
        "min_stock": product.min_stock,
        "max_stock": product.max_stock,
        "cost_price_cents": product.cost_price_cents,
        "sale_price_cents": product.sale_price_cents,
        "stock_value_cents": product.current_stock * product.cost_price_cents,
    }


def _active_products():
    return db.session.query(Product).filter(Product.is_active.is_(True))


def inventory_report() -> dict:
    products = _active_products().order_by(Product.name.asc()).all()
    rows = [_product_row(p) for p in products]
    return {
        "total_products": len(rows),
        "total_items": sum(r["current_stock"] for r in rows),
        "total_value_cents": sum(r["stock_value_cents"] for r in rows),
        "rows": rows,
    }


def low_stock_report() -> list[dict]:
    products = _active_products().filter(
        Product.current_stock <= Product.min_stock
    ).order_by(Product.current_stock.asc(), Product.id.asc()).all()
    return [_product_row(p) for p in products]


def high_stock_report() -> list[dict]:
    products = _active_products().filter(
        Product.current_stock >= Product.max_stock
    ).order_by(Product.current_stock.desc(), Product.id.asc()).all()
    return [_product_row(p) for p in products]


def _sales_totals(start: datetime | None, end: datetime | None, *, end_exclusive: bool = False) -> tuple[int, int]:
    query = db.session.query(
        func.coalesce(func.sum(SalesOrder.total_cents), 0),
        func.count(SalesOrder.id),
    ).filter(SalesOrder.status.in_(COUNTED_SALES_STATUSES))
    if start:
        query = query.filter(SalesOrder.order_date >= start)
    if end:
        query = query.filter(SalesOrder.order_date < end if end_exclusive else SalesOrder.order_date <= end)
    total, count = query.one()
    return int(total or 0), int(count or 0)


def sales_report(*, start: datetime | None = None, end: datetime | None = None) -> dict:
    total_sales, total_orders = _sales_totals(start, end)
    return {
        "start": to_utc_z(start) if start else None,
        "end": to_utc_z(end) if end else None,
        "total_sales_cents": total_sales,
        "total_orders": total_orders,
        "average_ticket_cents": total_sales // total_orders if total_orders else 0,
    }


def top_products(*, start: datetime | None = None, end: datetime | None = None, limit: int = 10) -> list[dict]:
    """Best sellers by quantity over counted orders."""
    query = db.session.query(
        SalesOrderItem.product_id.label("product_id"),
        func.coalesce(func.sum(SalesOrderItem.quantity), 0).label("quantity"),
        func.coalesce(func.sum(SalesOrderItem.total_price_cents), 0).label("revenue_cents"),
    ).join(SalesOrder, SalesOrderItem.sales_order_id == SalesOrder.id).filter(
        SalesOrder.status.in_(COUNTED_SALES_STATUSES),
    )
    if start:
        query = query.filter(SalesOrder.order_date >= start)
    if end:
        query = query.filter(SalesOrder.order_date <= end)

    rows = query.group_by(SalesOrderItem.product_id).order_by(
        func.sum(SalesOrderItem.quantity).desc(), SalesOrderItem.product_id.asc()
    ).limit(limit).all()

    product_ids = [row.product_id for row in rows]
    products = {
        p.id: p for p in db.session.query(Product).filter(Product.id.in_(product_ids)).all()
    } if product_ids else {}

    result = []
    for row in rows:
        product = products.get(row.product_id)
        result.append({
            "product_id": row.product_id,
            "code": product.code if product else None,
            "name": product.name if product else None,
            "quantity": int(row.quantity or 0),
            "revenue_cents": int(row.revenue_cents or 0),
        })
    return result


def _open_balance(model, settled_column) -> int:
    total = db.session.query(
        func.coalesce(func.sum(model.amount_cents - settled_column), 0)
    ).filter(model.status.in_(OPEN_ACCOUNT_STATUSES)).scalar()
    return int(total or 0)


def _growth_percent(current: int, previous: int) -> float:
    if not previous:
        return 100.0 if current else 0.0
    return round((current - previous) / previous * 100.0, 2)


def dashboard_stats(*, now: datetime | None = None) -> dict:
    now = now or utcnow()
    this_month = month_start(now.date())
    last_month = previous_month_start(now.date())

    month_sales, month_orders = _sales_totals(this_month, None)
    prev_sales, prev_orders = _sales_totals(last_month, this_month, end_exclusive=True)

    inventory = db.session.query(
        func.coalesce(func.sum(Product.current_stock * Product.cost_price_cents), 0),
        func.coalesce(func.sum(Product.current_stock), 0),
        func.count(Product.id),
    ).filter(Product.is_active.is_(True)).one()

    low_count = _active_products().filter(Product.current_stock <= Product.min_stock).count()
    high_count = _active_products().filter(Product.current_stock >= Product.max_stock).count()
    unread_alerts = db.session.query(func.count(StockAlert.id)).filter(StockAlert.is_read.is_(False)).scalar()

    priced = _active_products().filter(Product.sale_price_cents > 0).all()
    margins = [
        (p.sale_price_cents - p.cost_price_cents) / p.sale_price_cents * 100.0
        for p in priced
    ]

    return {
        "month_sales_cents": month_sales,
        "month_orders": month_orders,
        "average_ticket_cents": month_sales // month_orders if month_orders else 0,
        "sales_growth_percent": _growth_percent(month_sales, prev_sales),
        "orders_growth_percent": _growth_percent(month_orders, prev_orders),
        "inventory_value_cents": int(inventory[0] or 0),
        "inventory_items": int(inventory[1] or 0),
        "active_products": int(inventory[2] or 0),
        "low_stock_count": low_count,
        "high_stock_count": high_count,
        "open_payables_cents": _open_balance(AccountPayable, AccountPayable.paid_amount_cents),
        "open_receivables_cents": _open_balance(AccountReceivable, AccountReceivable.received_amount_cents),
        "unread_alerts": int(unread_alerts or 0),
        "average_margin_percent": round(sum(margins) / len(margins), 2) if margins else 0.0,
    }


def multi_unit_dashboard(*, unit_id: int | None = None) -> list[dict]:
    """Stock and pending transfers per active unit (or the given one)."""
    units_query = db.session.query(StoreUnit)
    if unit_id is not None:
        units_query = units_query.filter(StoreUnit.id == unit_id)
    else:
        units_query = units_query.filter(StoreUnit.is_active.is_(True))
    units = units_query.order_by(StoreUnit.name.asc()).all()
    if unit_id is not None and not units:
        raise NotFoundError(f"Store unit {unit_id} not found")
    unit_ids = [u.id for u in units]
    if not unit_ids:
        return []

    stock_rows = db.session.query(
        UnitStock.unit_id,
        func.count(UnitStock.id),
        func.coalesce(func.sum(UnitStock.quantity), 0),
        func.coalesce(func.sum(UnitStock.quantity * Product.cost_price_cents), 0),
    ).join(Product, UnitStock.product_id == Product.id).filter(
        UnitStock.unit_id.in_(unit_ids)
    ).group_by(UnitStock.unit_id).all()
    stock = {row[0]: row[1:] for row in stock_rows}

    low_rows = db.session.query(UnitStock.unit_id, func.count(UnitStock.id)).filter(
        UnitStock.unit_id.in_(unit_ids),
        UnitStock.quantity <= UnitStock.min_stock,
    ).group_by(UnitStock.unit_id).all()
    low = dict(low_rows)

    inbound = dict(db.session.query(StockTransfer.to_unit_id, func.count(StockTransfer.id)).filter(
        StockTransfer.to_unit_id.in_(unit_ids),
        StockTransfer.status.in_(PENDING_TRANSFER_STATUSES),
    ).group_by(StockTransfer.to_unit_id).all())
    outbound = dict(db.session.query(StockTransfer.from_unit_id, func.count(StockTransfer.id)).filter(
        StockTransfer.from_unit_id.in_(unit_ids),
        StockTransfer.status.in_(PENDING_TRANSFER_STATUSES),
    ).group_by(StockTransfer.from_unit_id).all())

    result = []
    for unit in units:
        skus, quantity, value = stock.get(unit.id, (0, 0, 0))
        result.append({
            "unit_id": unit.id,
            "code": unit.code,
            "name": unit.name,
            "type": unit.type,
            "sku_count": int(skus or 0),
            "total_quantity": int(quantity or 0),
            "stock_value_cents": int(value or 0),
            "low_stock_rows": int(low.get(unit.id, 0)),
            "pending_inbound_transfers": int(inbound.get(unit.id, 0)),
            "pending_outbound_transfers": int(outbound.get(unit.id, 0)),
        })
    return result
