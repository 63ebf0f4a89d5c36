# backend/stockbook/__init__.py
import logging

from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from .config import Config
from .errors import StockbookError, StorageError
from .extensions import db, migrate
from .responses import fail
from .services.concurrency import ProductLockRegistry
from .services.providers import LOCKS_EXTENSION_KEY


def create_app(config_object=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if isinstance(config_object, dict):
        app.config.update(config_object)
    elif config_object is not None:
        app.config.from_object(config_object)

    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if isinstance(level, int):
        app.logger.setLevel(level)
        logging.getLogger("stockbook").setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # One lock registry per process: serializes movements per product
    app.extensions[LOCKS_EXTENSION_KEY] = ProductLockRegistry()

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.products import products_bp
    from .routes.reference import categories_bp, suppliers_bp, customers_bp
    from .routes.stock import stock_bp
    from .routes.invoices import invoices_bp
    from .routes.rpc import rpc_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(categories_bp)
    app.register_blueprint(suppliers_bp)
    app.register_blueprint(customers_bp)
    app.register_blueprint(stock_bp)
    app.register_blueprint(invoices_bp)
    app.register_blueprint(rpc_bp)

    @app.errorhandler(StockbookError)
    def handle_stockbook_error(exc):
        if isinstance(exc, StorageError):
            app.logger.warning("Storage failure: %s", exc.message)
        return fail(exc)

    @app.errorhandler(SQLAlchemyError)
    def handle_storage_error(exc):
        db.session.rollback()
        app.logger.exception("Unhandled storage error")
        return fail(StorageError("Storage error, nothing was changed"))

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
