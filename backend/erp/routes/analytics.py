# Overview: Flask API routes for stock turnover and the DRE income statement.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth
from ..services import analytics_service
from ..validation import require_positive_int
from .common import DOMAIN_ERRORS, fail, int_arg


stock_turnover_bp = Blueprint("stock_turnover", __name__, url_prefix="/api/stock-turnover")
dre_bp = Blueprint("dre", __name__, url_prefix="/api/dre")


@stock_turnover_bp.get("/calculate")
@require_auth
def calculate_turnover():
    """Query params: product_id (required), unit_id, period ("YYYY-MM", default current month)."""
    try:
        result = analytics_service.calculate_turnover(
            product_id=require_positive_int(request.args.get("product_id"), "product_id"),
            unit_id=int_arg("unit_id"),
            period=request.args.get("period") or None,
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@stock_turnover_bp.get("/report")
@require_auth
def turnover_report():
    """Query params: unit_id, start_period, end_period."""
    try:
        result = analytics_service.turnover_report(
            unit_id=int_arg("unit_id"),
            start_period=request.args.get("start_period") or None,
            end_period=request.args.get("end_period") or None,
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@dre_bp.get("")
@require_auth
def calculate_dre():
    """Query params: period ("YYYY-MM", default current month), unit_id."""
    try:
        result = analytics_service.calculate_dre(
            request.args.get("period") or None,
            int_arg("unit_id"),
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return fail(e)


@dre_bp.get("/report")
@require_auth
def dre_report():
    """One statement per month. Query params: start_period, end_period, unit_id."""
    try:
        result = analytics_service.dre_report(
            start_period=request.args.get("start_period") or None,
            end_period=request.args.get("end_period") or None,
            unit_id=int_arg("unit_id"),
        )
        return jsonify(result), 200
    except DOMAIN_ERRORS as e:
        return fail(e)
