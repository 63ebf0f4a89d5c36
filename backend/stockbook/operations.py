# Overview: Named operations exposed over the request/response boundary ("products.list", "stock.recordMovement", ...).

"""
Every operation takes keyword params and returns plain JSON-ready data. The
REST blueprints and the /api/rpc channel both call through here, so the two
surfaces cannot drift apart. Errors are StockbookError subclasses; turning
them into the failure envelope is the caller's job.
"""
from __future__ import annotations

import inspect
from functools import partial

from .errors import NotFoundError, ValidationError
from .services import providers

# camelCase parameter names used by the desktop client
PARAM_ALIASES = {
    "productId": "product_id",
    "invoiceId": "invoice_id",
    "signedQuantity": "quantity",
    "invoiceNumber": "invoice_number",
    "customerId": "customer_id",
    "supplierId": "supplier_id",
    "amountCents": "amount_cents",
}


# ---------------------------------------------------------------------------
# Inventory store (products, categories, suppliers, customers)
# ---------------------------------------------------------------------------

def list_records(kind: str, filter: dict | None = None) -> list[dict]:
    return [r.to_dict() for r in providers.inventory_store(kind).list(filter)]


def get_record(kind: str, id: str) -> dict | None:
    record = providers.inventory_store(kind).get(id)
    return record.to_dict() if record is not None else None


def resolve_record(kind: str, id: str) -> dict | None:
    """Historical lookup: soft-deleted rows come back with is_deleted=true."""
    record = providers.inventory_store(kind).resolve(id)
    return record.to_dict() if record is not None else None


def create_record(kind: str, fields: dict | None = None) -> dict:
    return providers.inventory_store(kind).create(fields or {}).to_dict()


def update_record(kind: str, id: str, fields: dict | None = None) -> dict:
    return providers.inventory_store(kind).update(id, fields or {}).to_dict()


def delete_record(kind: str, id: str) -> dict:
    record = providers.inventory_store(kind).soft_delete(id)
    return {"id": record.id, "deleted_at": record.to_dict()["deleted_at"]}


# ---------------------------------------------------------------------------
# Stock ledger
# ---------------------------------------------------------------------------

def record_movement(
    product_id: str,
    kind: str,
    quantity: int,
    invoice_id: str | None = None,
    note: str | None = None,
    user_id: str | None = None,
) -> dict:
    movement = providers.stock_ledger().record_movement(
        product_id, kind, quantity,
        invoice_id=invoice_id, note=note, user_id=user_id,
    )
    return movement.to_dict()


def record_movements(entries: list, atomic: bool = False, user_id: str | None = None) -> dict:
    if not isinstance(entries, list):
        raise ValidationError("entries must be a list", fields={"entries": "invalid"})
    results = providers.stock_ledger().record_movements(entries, atomic=bool(atomic), user_id=user_id)
    return {
        "atomic": bool(atomic),
        "recorded": sum(1 for r in results if r.success),
        "failed": sum(1 for r in results if not r.success),
        "results": [r.to_dict() for r in results],
    }


def get_history(product_id: str, limit: int | str | None = None) -> list[dict]:
    # query strings deliver the limit as text
    if isinstance(limit, str) and limit.strip().isdecimal():
        limit = int(limit)
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int) or limit < 1):
        raise ValidationError("limit must be a positive integer", fields={"limit": "invalid"})
    return [m.to_dict() for m in providers.stock_ledger().get_history(product_id, limit=limit)]


def verify_stock(product_id: str) -> dict:
    return providers.stock_ledger().verify(product_id)


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------

def create_invoice(
    kind: str,
    items: list,
    invoice_number: str | None = None,
    customer_id: str | None = None,
    supplier_id: str | None = None,
    party_name: str | None = None,
    party_phone: str | None = None,
    discount_cents: int = 0,
    payments: list | None = None,
    note: str | None = None,
    business_id: str | None = None,
    user_id: str | None = None,
) -> dict:
    invoice = providers.invoice_service().create(
        kind=kind,
        items=items,
        invoice_number=invoice_number,
        customer_id=customer_id,
        supplier_id=supplier_id,
        party_name=party_name,
        party_phone=party_phone,
        discount_cents=discount_cents,
        payments=payments or (),
        note=note,
        user_id=user_id,
        business_id=business_id,
    )
    return invoice.to_dict(include_lines=True)


def get_invoice(id: str) -> dict | None:
    invoice = providers.invoice_service().get(id)
    return invoice.to_dict(include_lines=True) if invoice is not None else None


def list_invoices(filter: dict | None = None) -> list[dict]:
    return [i.to_dict() for i in providers.invoice_service().list(filter)]


def add_payment(id: str, amount_cents: int, method: str = "cash", reference: str | None = None) -> dict:
    payment = providers.invoice_service().add_payment(
        id, amount_cents=amount_cents, method=method, reference=reference,
    )
    return payment.to_dict()


OPERATIONS = {}
for _kind in ("products", "categories", "suppliers", "customers"):
    OPERATIONS.update({
        f"{_kind}.list": partial(list_records, _kind),
        f"{_kind}.get": partial(get_record, _kind),
        f"{_kind}.resolve": partial(resolve_record, _kind),
        f"{_kind}.create": partial(create_record, _kind),
        f"{_kind}.update": partial(update_record, _kind),
        f"{_kind}.delete": partial(delete_record, _kind),
    })
OPERATIONS.update({
    "stock.recordMovement": record_movement,
    "stock.recordMovements": record_movements,
    "stock.getHistory": get_history,
    "stock.verify": verify_stock,
    "invoices.create": create_invoice,
    "invoices.get": get_invoice,
    "invoices.list": list_invoices,
    "invoices.addPayment": add_payment,
})

# Operations that are stamped with the caller's verified user id
USER_STAMPED = {"stock.recordMovement", "stock.recordMovements", "invoices.create"}


def dispatch(operation: str, params: dict | None, user_id: str | None = None):
    handler = OPERATIONS.get(operation)
    if handler is None:
        raise NotFoundError(f"Unknown operation: {operation}")
    if params is None:
        params = {}
    if not isinstance(params, dict):
        raise ValidationError("params must be an object", fields={"params": "invalid"})

    params = {PARAM_ALIASES.get(k, k): v for k, v in params.items()}
    params.pop("user_id", None)
    if operation in USER_STAMPED:
        params["user_id"] = user_id

    try:
        inspect.signature(handler).bind(**params)
    except TypeError as exc:
        raise ValidationError(f"Invalid params for {operation}: {exc}") from exc
    return handler(**params)
