# backend/stockbook/routes/stock.py
"""
Stock ledger routes.

- POST /api/stock/movements               record one movement
- POST /api/stock/movements/batch         record many ({"entries": [...], "atomic": false})
- GET  /api/stock/<product_id>/history    movements, newest first (?limit=N)
- GET  /api/stock/<product_id>/verify     fold check of the movement history

The movement is stamped with the caller's verified user id.
"""
from flask import Blueprint, request, g

from .. import operations
from ..errors import ValidationError
from ..responses import json_object, ok
from ..decorators import require_identity

stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")

MOVEMENT_FIELDS = {"product_id", "kind", "quantity", "invoice_id", "note"}


@stock_bp.post("/movements")
@require_identity
def record_movement():
    payload = json_object()

    unknown = set(payload) - MOVEMENT_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")
    missing = [k for k in ("product_id", "kind", "quantity") if payload.get(k) is None]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            fields={k: "required" for k in missing},
        )

    movement = operations.record_movement(user_id=g.user_id, **payload)
    return ok(movement, 201)


@stock_bp.post("/movements/batch")
@require_identity
def record_movements():
    payload = json_object()
    result = operations.record_movements(
        payload.get("entries"),
        atomic=payload.get("atomic", False),
        user_id=g.user_id,
    )
    return ok(result, 201 if result["recorded"] else 200)


@stock_bp.get("/<product_id>/history")
@require_identity
def get_history(product_id: str):
    limit = request.args.get("limit")
    return ok(operations.get_history(product_id, limit=limit))


@stock_bp.get("/<product_id>/verify")
@require_identity
def verify(product_id: str):
    return ok(operations.verify_stock(product_id))
