# Overview: Flask API routes for categories, suppliers and customers (flat reference records).

"""
Reference record routes share one shape:

- GET    /api/<kind>              list (search, is_active), ordered by name
- GET    /api/<kind>/<id>         live record
- GET    /api/<kind>/<id>/resolve historical lookup, includes soft-deleted
- POST   /api/<kind>              create
- PUT    /api/<kind>/<id>         partial update
- DELETE /api/<kind>/<id>         soft delete, idempotent
"""
from flask import Blueprint, request

from .. import operations
from ..errors import NotFoundError
from ..responses import json_object, ok
from ..decorators import require_identity


def make_reference_blueprint(kind: str, label: str) -> Blueprint:
    bp = Blueprint(kind, __name__, url_prefix=f"/api/{kind}")

    @bp.get("")
    @require_identity
    def list_records():
        return ok(operations.list_records(kind, filter=request.args.to_dict()))

    @bp.get("/<record_id>")
    @require_identity
    def get_record(record_id: str):
        record = operations.get_record(kind, record_id)
        if record is None:
            raise NotFoundError(f"{label} not found")
        return ok(record)

    @bp.get("/<record_id>/resolve")
    @require_identity
    def resolve_record(record_id: str):
        record = operations.resolve_record(kind, record_id)
        if record is None:
            raise NotFoundError(f"{label} not found")
        return ok(record)

    @bp.post("")
    @require_identity
    def create_record():
        payload = json_object()
        return ok(operations.create_record(kind, fields=payload), 201)

    @bp.route("/<record_id>", methods=["PUT", "PATCH"])
    @require_identity
    def update_record(record_id: str):
        payload = json_object()
        return ok(operations.update_record(kind, record_id, fields=payload))

    @bp.delete("/<record_id>")
    @require_identity
    def delete_record(record_id: str):
        return ok(operations.delete_record(kind, record_id))

    return bp


categories_bp = make_reference_blueprint("categories", "Category")
suppliers_bp = make_reference_blueprint("suppliers", "Supplier")
customers_bp = make_reference_blueprint("customers", "Customer")
