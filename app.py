"""Storefront order engine Flask application."""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Flask, jsonify

from routes import admin, api
from storefront.config import AppConfig, load_env
from storefront.db.migrations import migrate
from storefront.db.session import Database
from storefront.errors import StoreError
from storefront.services.cancellation_service import CancellationService
from storefront.services.cart_service import CartService
from storefront.services.checkout_service import CheckoutService
from storefront.services.coupon_service import CouponService
from storefront.services.logging import configure_logging, log_event
from storefront.services.notifications import LogNotificationSink, NotificationSink
from storefront.services.order_service import OrderService
from storefront.services.payment import PaymentAuthorizer
from storefront.services.product_stock import ProductStockService
from storefront.services.returns_service import ReturnService
from storefront.services.status_service import OrderStatusService


def build_components(
    database: Database,
    config: AppConfig,
    *,
    payments: Optional[PaymentAuthorizer] = None,
    notifier: Optional[NotificationSink] = None,
) -> Dict[str, Any]:
    """Wire every service against one database handle."""
    notifier = notifier or LogNotificationSink()
    session_factory = database.session
    stock = ProductStockService()
    coupons = CouponService(session_factory)
    status_machine = OrderStatusService(session_factory, notifier)
    return {
        "database": database,
        "notifier": notifier,
        "stock": stock,
        "cart": CartService(session_factory),
        "coupons": coupons,
        "orders": OrderService(session_factory),
        "status": status_machine,
        "checkout": CheckoutService(
            session_factory,
            stock,
            coupons,
            payments=payments,
            notifier=notifier,
            currency=config.currency,
        ),
        "cancellation": CancellationService(session_factory, stock, status_machine, notifier),
        "returns": ReturnService(session_factory, notifier),
    }


def _render_store_error(exc: StoreError):
    return jsonify(exc.to_dict()), exc.http_status


def create_app(
    config: Optional[AppConfig] = None,
    *,
    payments: Optional[PaymentAuthorizer] = None,
    notifier: Optional[NotificationSink] = None,
) -> Flask:
    config = config or load_env()
    configure_logging(config.log_level)
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["STOREFRONT_CONFIG"] = config

    database = Database(config.database_url, lock_timeout_seconds=config.lock_timeout_seconds)
    app.extensions["storefront_components"] = build_components(
        database, config, payments=payments, notifier=notifier
    )
    app.register_error_handler(StoreError, _render_store_error)

    app.register_blueprint(api.api_bp)
    app.register_blueprint(admin.admin_bp)

    return app


def main() -> None:
    app = create_app()
    database = app.extensions["storefront_components"]["database"]
    version = migrate(database)
    log_event("info", "app.starting", schema_version=version, dialect=database.dialect)
    try:
        app.run(host="0.0.0.0", port=6055, debug=False)
    finally:
        database.dispose()


if __name__ == "__main__":
    main()
