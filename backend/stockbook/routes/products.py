# Overview: Flask API routes for products; parses input and returns envelope responses.

# backend/stockbook/routes/products.py
"""
Product routes.

- GET    /api/products                list (search, category_id, supplier_id, is_active)
- GET    /api/products/<id>           live product, 404 when absent or deleted
- GET    /api/products/<id>/resolve   historical lookup, includes soft-deleted
- POST   /api/products                create
- PUT    /api/products/<id>           partial update (stock_qty excluded)
- DELETE /api/products/<id>           soft delete, idempotent
"""
from flask import Blueprint, request

from .. import operations
from ..errors import NotFoundError
from ..responses import json_object, ok
from ..decorators import require_identity

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("")
@require_identity
def list_products():
    return ok(operations.list_records("products", filter=request.args.to_dict()))


@products_bp.get("/<product_id>")
@require_identity
def get_product(product_id: str):
    product = operations.get_record("products", product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return ok(product)


@products_bp.get("/<product_id>/resolve")
@require_identity
def resolve_product(product_id: str):
    product = operations.resolve_record("products", product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return ok(product)


@products_bp.post("")
@require_identity
def create_product():
    payload = json_object()
    return ok(operations.create_record("products", fields=payload), 201)


@products_bp.route("/<product_id>", methods=["PUT", "PATCH"])
@require_identity
def update_product(product_id: str):
    payload = json_object()
    return ok(operations.update_record("products", product_id, fields=payload))


@products_bp.delete("/<product_id>")
@require_identity
def delete_product(product_id: str):
    return ok(operations.delete_record("products", product_id))
