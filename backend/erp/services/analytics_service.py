# Overview: Read-only financial projections: DRE, ABC classification, stock turnover.

from __future__ import annotations

from datetime import datetime, timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import FinancialTransaction, Product, Return, SalesOrder, SalesOrderItem, StockMovement, UnitStock
from ..models.documents import RETURN_STATUS_PROCESSED
from ..models.finance import TRANSACTION_EXPENSE
from ..models.orders import COUNTED_SALES_STATUSES
from ..models.stock import MOVEMENT_OUT, REASON_SALE
from ..validation import NotFoundError, ValidationError
from erp.time_utils import current_period, iter_periods, period_bounds, to_utc_z, utcnow


ABC_METRICS = {"revenue", "profit"}
DEFAULT_ABC_WINDOW_DAYS = 365
MAX_REPORT_PERIODS = 36

# Expense categories that are not operating expenses in the income statement
NON_OPERATING_EXPENSE_CATEGORIES = {"SUPPLIER", "TAX", "REFUNDS"}


def _bounds(period: str) -> tuple[datetime, datetime]:
    try:
        return period_bounds(period)
    except ValueError as exc:
        raise ValidationError(str(exc))


def _percent(part: int, whole: int) -> float:
    if not whole:
        return 0.0
    return round(part / whole * 100.0, 2)


# ---------------------------------------------------------------------------
# DRE (income statement)
# ---------------------------------------------------------------------------

def calculate_dre(period: str | None = None, unit_id: int | None = None) -> dict:
    """
    Income statement for a "YYYY-MM" period, computed on the fly.

    gross_revenue - returns - discounts = net_revenue
    net_revenue - cmv = gross_profit
    gross_profit - operating_expenses = operating_profit
    operating_profit - taxes = net_profit
    """
    period = period or current_period()
    start, end = _bounds(period)

    orders = db.session.query(
        func.coalesce(func.sum(SalesOrder.subtotal_cents), 0),
        func.coalesce(func.sum(SalesOrder.discount_cents), 0),
        func.count(SalesOrder.id),
    ).filter(
        SalesOrder.status.in_(COUNTED_SALES_STATUSES),
        SalesOrder.order_date >= start,
        SalesOrder.order_date < end,
    )
    cmv_query = db.session.query(
        func.coalesce(func.sum(SalesOrderItem.unit_cost_cents * SalesOrderItem.quantity), 0),
    ).join(SalesOrder, SalesOrderItem.sales_order_id == SalesOrder.id).filter(
        SalesOrder.status.in_(COUNTED_SALES_STATUSES),
        SalesOrder.order_date >= start,
        SalesOrder.order_date < end,
    )
    returns_query = db.session.query(func.coalesce(func.sum(Return.refund_amount_cents), 0)).filter(
        Return.status == RETURN_STATUS_PROCESSED,
        Return.processed_at >= start,
        Return.processed_at < end,
    )
    expenses_query = db.session.query(
        FinancialTransaction.category,
        func.coalesce(func.sum(FinancialTransaction.amount_cents), 0),
    ).filter(
        FinancialTransaction.type == TRANSACTION_EXPENSE,
        FinancialTransaction.transaction_date >= start,
        FinancialTransaction.transaction_date < end,
    )
    if unit_id is not None:
        orders = orders.filter(SalesOrder.unit_id == unit_id)
        cmv_query = cmv_query.filter(SalesOrder.unit_id == unit_id)
        returns_query = returns_query.filter(Return.unit_id == unit_id)
        expenses_query = expenses_query.filter(FinancialTransaction.unit_id == unit_id)

    gross_revenue, discounts, order_count = orders.one()
    gross_revenue, discounts = int(gross_revenue), int(discounts)
    cmv = int(cmv_query.scalar() or 0)
    returns = int(returns_query.scalar() or 0)
    expenses = {
        category: int(total)
        for category, total in expenses_query.group_by(FinancialTransaction.category).all()
    }

    net_revenue = gross_revenue - returns - discounts
    gross_profit = net_revenue - cmv

    salary = expenses.get("SALARY", 0)
    rent = expenses.get("RENT", 0)
    marketing = expenses.get("MARKETING", 0)
    other = sum(
        total for category, total in expenses.items()
        if category not in NON_OPERATING_EXPENSE_CATEGORIES | {"SALARY", "RENT", "MARKETING"}
    )
    operating_expenses = salary + rent + marketing + other
    operating_profit = gross_profit - operating_expenses
    taxes = expenses.get("TAX", 0)
    net_profit = operating_profit - taxes

    return {
        "period": period,
        "unit_id": unit_id,
        "order_count": int(order_count),
        "gross_revenue_cents": gross_revenue,
        "returns_cents": returns,
        "discounts_cents": discounts,
        "net_revenue_cents": net_revenue,
        "cmv_cents": cmv,
        "gross_profit_cents": gross_profit,
        "gross_margin_percent": _percent(gross_profit, net_revenue),
        "operating_expenses": {
            "salary_cents": salary,
            "rent_cents": rent,
            "marketing_cents": marketing,
            "other_cents": other,
            "total_cents": operating_expenses,
        },
        "operating_profit_cents": operating_profit,
        "operating_margin_percent": _percent(operating_profit, net_revenue),
        "taxes_cents": taxes,
        "net_profit_cents": net_profit,
        "net_margin_percent": _percent(net_profit, net_revenue),
    }


def dre_report(
    *,
    start_period: str | None = None,
    end_period: str | None = None,
    unit_id: int | None = None,
) -> list[dict]:
    """One statement per month from start_period to end_period (inclusive)."""
    end_period = end_period or current_period()
    start_period = start_period or end_period
    _bounds(start_period)
    _bounds(end_period)
    periods = iter_periods(start_period, end_period)
    if not periods:
        raise ValidationError("start_period must not be after end_period")
    if len(periods) > MAX_REPORT_PERIODS:
        raise ValidationError(f"At most {MAX_REPORT_PERIODS} periods per report")
    return [calculate_dre(period, unit_id) for period in periods]


# ---------------------------------------------------------------------------
# ABC analysis
# ---------------------------------------------------------------------------

def abc_analysis(
    *,
    start: datetime | None = None,
    end: datetime | None = None,
    metric: str = "revenue",
    unit_id: int | None = None,
) -> dict:
    """
    Classify products by cumulative share of revenue (or profit).

    Defaults to the last 12 months. Cumulative share <= ABC_CLASS_A_CUTOFF
    is A, <= ABC_CLASS_B_CUTOFF is B, the rest C. Products whose metric is
    not positive are left out; no rows when the total is 0.
    """
    if metric not in ABC_METRICS:
        raise ValidationError(f"metric must be one of: {', '.join(sorted(ABC_METRICS))}")
    end = end or utcnow()
    start = start or (end - timedelta(days=DEFAULT_ABC_WINDOW_DAYS))
    cutoff_a = float(current_app.config.get("ABC_CLASS_A_CUTOFF", 80))
    cutoff_b = float(current_app.config.get("ABC_CLASS_B_CUTOFF", 95))

    revenue_col = func.coalesce(func.sum(SalesOrderItem.total_price_cents), 0)
    cost_col = func.coalesce(func.sum(SalesOrderItem.unit_cost_cents * SalesOrderItem.quantity), 0)
    query = db.session.query(
        SalesOrderItem.product_id.label("product_id"),
        Product.code.label("code"),
        Product.name.label("name"),
        revenue_col.label("revenue_cents"),
        cost_col.label("cost_cents"),
        func.coalesce(func.sum(SalesOrderItem.quantity), 0).label("units_sold"),
    ).join(SalesOrder, SalesOrderItem.sales_order_id == SalesOrder.id).join(
        Product, SalesOrderItem.product_id == Product.id
    ).filter(
        SalesOrder.status.in_(COUNTED_SALES_STATUSES),
        SalesOrder.order_date >= start,
        SalesOrder.order_date <= end,
    )
    if unit_id is not None:
        query = query.filter(SalesOrder.unit_id == unit_id)

    rows = query.group_by(SalesOrderItem.product_id, Product.code, Product.name).all()

    entries = []
    for row in rows:
        revenue = int(row.revenue_cents or 0)
        cost = int(row.cost_cents or 0)
        value = revenue if metric == "revenue" else revenue - cost
        if value <= 0:
            continue
        entries.append({
            "product_id": row.product_id,
            "code": row.code,
            "name": row.name,
            "revenue_cents": revenue,
            "profit_cents": revenue - cost,
            "units_sold": int(row.units_sold or 0),
            "value_cents": value,
        })
    entries.sort(key=lambda e: (-e["value_cents"], e["product_id"]))

    total = sum(e["value_cents"] for e in entries)
    cumulative = 0.0
    summary = {"A": 0, "B": 0, "C": 0}
    for entry in entries:
        share = entry["value_cents"] / total * 100.0
        cumulative += share
        if cumulative <= cutoff_a + 1e-9:
            bucket = "A"
        elif cumulative <= cutoff_b + 1e-9:
            bucket = "B"
        else:
            bucket = "C"
        entry["share_pct"] = round(share, 2)
        entry["cumulative_pct"] = round(cumulative, 2)
        entry["class"] = bucket
        summary[bucket] += 1

    return {
        "metric": metric,
        "start": to_utc_z(start),
        "end": to_utc_z(end),
        "total_cents": total,
        "summary": summary,
        "rows": entries,
    }


# ---------------------------------------------------------------------------
# Stock turnover
# ---------------------------------------------------------------------------

def _scoped(query, unit_id: int | None):
    if unit_id is None:
        return query.filter(StockMovement.unit_id.is_(None))
    return query.filter(StockMovement.unit_id == unit_id)


def _delta_since(product_ids: list[int], unit_id: int | None, since: datetime) -> dict[int, int]:
    query = _scoped(
        db.session.query(
            StockMovement.product_id,
            func.coalesce(func.sum(StockMovement.new_stock - StockMovement.previous_stock), 0),
        ).filter(StockMovement.product_id.in_(product_ids), StockMovement.created_at >= since),
        unit_id,
    )
    return {pid: int(total) for pid, total in query.group_by(StockMovement.product_id).all()}


def _current_stock(product_ids: list[int], unit_id: int | None) -> dict[int, int]:
    if unit_id is None:
        rows = db.session.query(Product.id, Product.current_stock).filter(Product.id.in_(product_ids)).all()
        return {pid: int(stock or 0) for pid, stock in rows}
    rows = db.session.query(
        UnitStock.product_id, func.coalesce(func.sum(UnitStock.quantity), 0)
    ).filter(UnitStock.unit_id == unit_id, UnitStock.product_id.in_(product_ids)).group_by(UnitStock.product_id).all()
    return {pid: int(total) for pid, total in rows}


def _units_sold(product_ids: list[int], unit_id: int | None, start: datetime, end: datetime) -> dict[int, int]:
    """SALE movements in scope; counted order items for products without any."""
    query = _scoped(
        db.session.query(StockMovement.product_id, func.coalesce(func.sum(StockMovement.quantity), 0)).filter(
            StockMovement.product_id.in_(product_ids),
            StockMovement.type == MOVEMENT_OUT,
            StockMovement.reason == REASON_SALE,
            StockMovement.created_at >= start,
            StockMovement.created_at < end,
        ),
        unit_id,
    )
    sold = {pid: int(total) for pid, total in query.group_by(StockMovement.product_id).all()}

    missing = [pid for pid in product_ids if pid not in sold]
    if missing:
        orders = db.session.query(
            SalesOrderItem.product_id, func.coalesce(func.sum(SalesOrderItem.quantity), 0)
        ).join(SalesOrder, SalesOrderItem.sales_order_id == SalesOrder.id).filter(
            SalesOrderItem.product_id.in_(missing),
            SalesOrder.status.in_(COUNTED_SALES_STATUSES),
            SalesOrder.order_date >= start,
            SalesOrder.order_date < end,
        )
        if unit_id is not None:
            orders = orders.filter(SalesOrder.unit_id == unit_id)
        sold.update({pid: int(total) for pid, total in orders.group_by(SalesOrderItem.product_id).all()})

    return sold


def _turnover_rows(products: list[Product], unit_id: int | None, start: datetime, end: datetime) -> list[dict]:
    product_ids = [p.id for p in products]
    if not product_ids:
        return []
    current = _current_stock(product_ids, unit_id)
    since_start = _delta_since(product_ids, unit_id, start)
    since_end = _delta_since(product_ids, unit_id, end)
    sold = _units_sold(product_ids, unit_id, start, end)
    days = max((end - start).days, 1)

    rows = []
    for product in products:
        now_stock = current.get(product.id, 0)
        opening = now_stock - since_start.get(product.id, 0)
        closing = now_stock - since_end.get(product.id, 0)
        average = (opening + closing) / 2
        units_sold = sold.get(product.id, 0)
        turnover = round(units_sold / average, 2) if average > 0 else 0.0
        daily = units_sold / days
        coverage = round(average / daily, 1) if units_sold > 0 else None
        rows.append({
            "product_id": product.id,
            "code": product.code,
            "name": product.name,
            "unit_id": unit_id,
            "units_sold": units_sold,
            "opening_stock": opening,
            "closing_stock": closing,
            "average_stock": round(average, 2),
            "turnover_rate": turnover,
            "coverage_days": coverage,
        })
    return rows


def calculate_turnover(*, product_id: int, unit_id: int | None = None, period: str | None = None) -> dict:
    """
    Turnover of one product in a month.

    turnover_rate = units_sold / average_stock (0 without stock),
    coverage_days = average_stock / (units_sold / days); None when nothing sold.
    """
    period = period or current_period()
    start, end = _bounds(period)
    product = db.session.get(Product, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    row = _turnover_rows([product], unit_id, start, end)[0]
    row["period"] = period
    return row


def turnover_report(
    *,
    unit_id: int | None = None,
    start_period: str | None = None,
    end_period: str | None = None,
) -> dict:
    """Turnover of every active product over [start_period, end_period], slowest first."""
    end_period = end_period or current_period()
    start_period = start_period or end_period
    start, _ = _bounds(start_period)
    _, end = _bounds(end_period)
    if start >= end:
        raise ValidationError("start_period must not be after end_period")

    products = db.session.query(Product).filter(Product.is_active.is_(True)).order_by(Product.id.asc()).all()
    rows = _turnover_rows(products, unit_id, start, end)
    rows.sort(key=lambda r: (r["turnover_rate"], r["product_id"]))

    return {
        "unit_id": unit_id,
        "start_period": start_period,
        "end_period": end_period,
        "rows": rows,
    }
