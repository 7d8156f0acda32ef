# backend/erp/__init__.py
from __future__ import annotations

import logging

from flask import Flask, request

from .config import Config, engine_options_for
from .extensions import db, migrate


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)

    if overrides:
        app.config.update(overrides)
        if "SQLALCHEMY_DATABASE_URI" in overrides and "SQLALCHEMY_ENGINE_OPTIONS" not in overrides:
            app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options_for(
                app.config["SQLALCHEMY_DATABASE_URI"], app.config["DB_STATEMENT_TIMEOUT_MS"]
            )

    if not app.debug and not app.testing:
        logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.suppliers import suppliers_bp
    from .routes.categories import categories_bp
    from .routes.products import products_bp, barcode_bp
    from .routes.customers import customers_bp
    from .routes.stock import stock_bp
    from .routes.purchase_orders import purchase_orders_bp
    from .routes.sales_orders import sales_orders_bp
    from .routes.finance import accounts_payable_bp, accounts_receivable_bp, financial_bp
    from .routes.reports import reports_bp, dashboard_bp
    from .routes.units import store_units_bp, unit_stock_bp, unit_movements_bp
    from .routes.transfers import transfers_bp
    from .routes.returns import returns_bp
    from .routes.analytics import stock_turnover_bp, dre_bp
    from .routes.pricing import pricing_bp
    from .routes.utils import audit_logs_bp, utils_bp

    for blueprint in (
        system_bp,
        auth_bp,
        suppliers_bp,
        categories_bp,
        products_bp,
        barcode_bp,
        customers_bp,
        stock_bp,
        purchase_orders_bp,
        sales_orders_bp,
        accounts_payable_bp,
        accounts_receivable_bp,
        financial_bp,
        reports_bp,
        dashboard_bp,
        store_units_bp,
        unit_stock_bp,
        unit_movements_bp,
        transfers_bp,
        returns_bp,
        stock_turnover_bp,
        dre_bp,
        pricing_bp,
        audit_logs_bp,
        utils_bp,
    ):
        app.register_blueprint(blueprint)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
            "http://localhost:4173",
            "http://127.0.0.1:4173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
