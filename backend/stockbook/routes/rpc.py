# Overview: Operation channel: one endpoint answering the named operations ("products.list", ...).

"""
POST /api/rpc  {"operation": "stock.recordMovement", "params": {...}}

Always answers HTTP 200 with the envelope; callers check "success" before
reading "data". products.get (and the other *.get operations) answer
success with data=null when the record is absent or soft-deleted.
"""
from flask import Blueprint, current_app, g, jsonify
from sqlalchemy.exc import SQLAlchemyError

from .. import operations
from ..errors import StockbookError, StorageError, ValidationError
from ..extensions import db
from ..decorators import require_identity
from ..responses import json_object

rpc_bp = Blueprint("rpc", __name__, url_prefix="/api")


@rpc_bp.post("/rpc")
@require_identity
def call_operation():
    operation = None
    try:
        payload = json_object()
        operation = payload.get("operation")
        if not operation or not isinstance(operation, str):
            raise ValidationError("operation is required", fields={"operation": "required"})
        data = operations.dispatch(operation, payload.get("params"), user_id=g.user_id)
    except StockbookError as exc:
        return jsonify(exc.to_dict())
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Operation %s failed", operation)
        return jsonify(StorageError("Storage error, nothing was changed").to_dict())

    return jsonify({"success": True, "data": data})
