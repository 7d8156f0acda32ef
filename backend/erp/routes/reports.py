# Overview: Flask API routes for reports and the dashboard; read-only.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth
from ..services import analytics_service, reporting_service
from .common import DOMAIN_ERRORS, datetime_arg, fail, int_arg


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")
dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@reports_bp.get("/inventory")
@require_auth
def inventory_report():
    return jsonify(reporting_service.inventory_report()), 200


@reports_bp.get("/low-stock")
@require_auth
def low_stock_report():
    return jsonify(reporting_service.low_stock_report()), 200


@reports_bp.get("/high-stock")
@require_auth
def high_stock_report():
    return jsonify(reporting_service.high_stock_report()), 200


@reports_bp.get("/sales")
@require_auth
def sales_report():
    """Query params: start_date, end_date."""
    try:
        result = reporting_service.sales_report(start=datetime_arg("start_date"), end=datetime_arg("end_date"))
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@reports_bp.get("/top-products")
@require_auth
def top_products():
    """Query params: start_date, end_date, limit (default 10, max 100)."""
    try:
        limit = min(max(int_arg("limit", 10), 1), 100)
        rows = reporting_service.top_products(
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
            limit=limit,
        )
        return jsonify(rows), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@reports_bp.get("/abc")
@require_auth
def abc_analysis():
    """Query params: start_date, end_date (default: last 12 months), metric (revenue|profit), unit_id."""
    try:
        result = analytics_service.abc_analysis(
            start=datetime_arg("start_date"),
            end=datetime_arg("end_date"),
            metric=request.args.get("metric") or "revenue",
            unit_id=int_arg("unit_id"),
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@dashboard_bp.get("/stats")
@require_auth
def dashboard_stats():
    return jsonify(reporting_service.dashboard_stats()), 200


@dashboard_bp.get("/multi-unit")
@require_auth
def multi_unit():
    """Query param: unit_id (optional, otherwise every active unit)."""
    try:
        return jsonify(reporting_service.multi_unit_dashboard(unit_id=int_arg("unit_id"))), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
