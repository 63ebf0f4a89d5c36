# Overview: Builds request-scoped services from the application's session, config and lock registry.

from __future__ import annotations

from flask import current_app

from ..errors import StorageError
from ..extensions import db
from .concurrency import ProductLockRegistry
from .inventory_store import ENTITY_SPECS, InventoryStore
from .invoice_service import InvoiceService
from .stock_ledger import StockLedger

LOCKS_EXTENSION_KEY = "stockbook.product_locks"


def product_locks() -> ProductLockRegistry:
    locks = current_app.extensions.get(LOCKS_EXTENSION_KEY)
    if locks is None:
        raise StorageError("stock ledger is not initialized")
    return locks


def inventory_store(kind: str) -> InventoryStore:
    config = current_app.config
    return InventoryStore(
        db.session,
        ENTITY_SPECS[kind],
        retry_attempts=config["STOCK_RETRY_ATTEMPTS"],
        retry_backoff=config["STOCK_RETRY_BACKOFF"],
    )


def stock_ledger() -> StockLedger:
    config = current_app.config
    return StockLedger(
        db.session,
        locks=product_locks(),
        retry_attempts=config["STOCK_RETRY_ATTEMPTS"],
        retry_backoff=config["STOCK_RETRY_BACKOFF"],
        allow_negative=config["ALLOW_NEGATIVE_STOCK"],
    )


def invoice_service() -> InvoiceService:
    return InvoiceService(db.session, stock_ledger())
