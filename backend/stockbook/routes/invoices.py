# backend/stockbook/routes/invoices.py
"""
Invoice routes.

- GET  /api/invoices                    list (kind, status, customer_id, supplier_id, search)
- POST /api/invoices                    create and post a sale or purchase invoice
- GET  /api/invoices/<id>               invoice with items and payments
- POST /api/invoices/<id>/payments      record a payment against the balance
"""
from flask import Blueprint, request, g

from .. import operations
from ..errors import NotFoundError, ValidationError
from ..responses import json_object, ok
from ..decorators import require_identity

invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")

INVOICE_FIELDS = {
    "kind", "items", "invoice_number", "customer_id", "supplier_id", "party_name",
    "party_phone", "discount_cents", "payments", "note", "business_id",
}
PAYMENT_FIELDS = {"amount_cents", "method", "reference"}


def _check_fields(payload: dict, allowed: set) -> None:
    unknown = set(payload) - allowed
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")


@invoices_bp.get("")
@require_identity
def list_invoices():
    return ok(operations.list_invoices(filter=request.args.to_dict()))


@invoices_bp.post("")
@require_identity
def create_invoice():
    payload = json_object()
    _check_fields(payload, INVOICE_FIELDS)
    if not payload.get("kind"):
        raise ValidationError("Missing required fields: kind", fields={"kind": "required"})
    payload.setdefault("items", None)
    return ok(operations.create_invoice(user_id=g.user_id, **payload), 201)


@invoices_bp.get("/<invoice_id>")
@require_identity
def get_invoice(invoice_id: str):
    invoice = operations.get_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    return ok(invoice)


@invoices_bp.post("/<invoice_id>/payments")
@require_identity
def add_payment(invoice_id: str):
    payload = json_object()
    _check_fields(payload, PAYMENT_FIELDS)
    if payload.get("amount_cents") is None:
        raise ValidationError("Missing required fields: amount_cents", fields={"amount_cents": "required"})
    return ok(operations.add_payment(invoice_id, **payload), 201)
