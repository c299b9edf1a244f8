# backend/storefront/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def _configure_logging(app: Flask) -> None:
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("storefront").setLevel(level)
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")


def _init_services(app: Flask) -> None:
    from .services.gateways import ManualPaymentGateway, SandboxPaymentGateway
    from .services.notification_service import LoggingNotificationSender, NotificationQueue, NotificationWorker
    from .services.payment_gateway import PaymentGatewayOrchestrator
    from .services.shipping_carriers import CarrierRegistry, NullShippingCarrierAdapter

    orchestrator = PaymentGatewayOrchestrator(app.config.get("PAYMENT_PROVIDERS"))
    orchestrator.register(SandboxPaymentGateway())
    orchestrator.register(ManualPaymentGateway())
    app.extensions["payment_gateways"] = orchestrator

    notification_queue = NotificationQueue(maxsize=int(app.config.get("NOTIFICATION_QUEUE_MAXSIZE", 0)))
    app.extensions["notification_queue"] = notification_queue
    if app.config.get("NOTIFICATION_WORKER_ENABLED"):
        worker = NotificationWorker(notification_queue, LoggingNotificationSender())
        worker.start()
        app.extensions["notification_worker"] = worker

    carriers = CarrierRegistry()
    carriers.register(NullShippingCarrierAdapter())
    app.extensions["shipping_carriers"] = carriers


def create_app(overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before extensions read the config
    if overrides:
        app.config.update(overrides)

    _configure_logging(app)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    _init_services(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.cart import cart_bp
    from .routes.checkout import checkout_bp
    from .routes.payments import payments_bp
    from .routes.orders import orders_bp
    from .routes.refunds import refunds_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(cart_bp)
    app.register_blueprint(checkout_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(refunds_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type, X-Tenant-ID, X-Signature"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
