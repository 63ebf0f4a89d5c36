# Overview: Sale and purchase invoices; every line posts a stock movement in the invoice's transaction.

"""
Invoice Service

- An invoice (header, lines, payments) and the stock movements for its lines
  commit as one unit. If any line fails (unknown product, insufficient stock
  under the strict policy, storage fault) nothing is kept.
- Lines snapshot product name, SKU, unit price and tax rate; later product
  edits do not touch issued invoices.
- sale lines move stock down ("sale" movements), purchase lines move it up
  ("purchase" movements). Each movement carries the invoice id.
- Totals are integer cents:
    line_total = quantity * unit_price
    line_tax   = round_half_up(line_total * tax_rate_bps / 10000)
    total      = subtotal - discount + tax
- status follows payments: unpaid (nothing paid), partial, paid.
"""
from __future__ import annotations

import logging
import re

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import ConcurrencyConflict, NotFoundError, StockbookError, StorageError, ValidationError
from ..models import (
    Customer,
    Invoice,
    InvoiceItem,
    Payment,
    Product,
    Supplier,
    INVOICE_KINDS,
    INVOICE_STATUSES,
    PAYMENT_METHODS,
)
from ..models.base import new_id
from .base import SessionService
from .concurrency import lock_for_update, run_with_retry
from .inventory_store import escape_like
from .stock_ledger import StockLedger

logger = logging.getLogger(__name__)

NUMBER_PREFIXES = {"sale": "INV", "purchase": "PUR"}
MOVEMENT_SIGN = {"sale": -1, "purchase": 1}
LIST_FILTERS = {"kind", "status", "customer_id", "supplier_id", "search"}


def _require_int(name: str, value, *, minimum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer", fields={name: "not an integer"})
    if minimum is not None and value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}", fields={name: "out of range"})
    return value


def line_tax_cents(line_total_cents: int, tax_rate_bps: int) -> int:
    # nearest-cent rounding (half-up)
    return (line_total_cents * tax_rate_bps + 5000) // 10000


def _is_number_conflict(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "uq_invoices_number" in message or "invoices.invoice_number" in message


def derive_status(total_cents: int, paid_cents: int) -> str:
    if paid_cents <= 0:
        return "unpaid" if total_cents > 0 else "paid"
    if paid_cents >= total_cents:
        return "paid"
    return "partial"


class InvoiceService(SessionService):
    def __init__(self, session, ledger: StockLedger):
        super().__init__(session)
        self.ledger = ledger

    # ------------------------------------------------------------------
    # Numbering
    # ------------------------------------------------------------------

    def next_invoice_number(self, kind: str) -> str:
        prefix = NUMBER_PREFIXES[kind]
        numbers = (
            self.session.query(Invoice.invoice_number)
            .filter(Invoice.invoice_number.like(f"{prefix}-%"))
            .all()
        )
        highest = 0
        for (number,) in numbers:
            match = re.fullmatch(rf"{prefix}-(\d+)", number)
            if match:
                highest = max(highest, int(match.group(1)))
        return f"{prefix}-{highest + 1:06d}"

    def _save(self, auto_numbered: bool, step) -> None:
        """
        Run a flush or commit. A generated number that another writer took
        first is a ConcurrencyConflict, so the retry draws the next number.
        """
        try:
            step()
        except IntegrityError as exc:
            if auto_numbered and _is_number_conflict(exc):
                raise ConcurrencyConflict("invoice number was taken concurrently") from exc
            raise

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _parse_items(self, items) -> list[dict]:
        if not isinstance(items, list) or not items:
            raise ValidationError("Invoice must have at least one item", fields={"items": "required"})
        parsed = []
        for i, item in enumerate(items):
            if not isinstance(item, dict) or not isinstance(item.get("product_id"), str) or not item["product_id"]:
                raise ValidationError(f"item {i}: product_id is required", fields={"items": "invalid"})
            quantity = _require_int(f"items[{i}].quantity", item.get("quantity"), minimum=1)
            price = item.get("unit_price_cents")
            if price is not None:
                price = _require_int(f"items[{i}].unit_price_cents", price, minimum=0)
            parsed.append({"product_id": item["product_id"], "quantity": quantity, "unit_price_cents": price})
        return parsed

    def _parse_payments(self, payments) -> list[dict]:
        if payments is None:
            payments = ()
        if not isinstance(payments, (list, tuple)):
            raise ValidationError("payments must be a list", fields={"payments": "invalid"})
        parsed = []
        for i, payment in enumerate(payments):
            if not isinstance(payment, dict):
                raise ValidationError(f"payment {i}: must be an object", fields={"payments": "invalid"})
            amount = _require_int(f"payments[{i}].amount_cents", payment.get("amount_cents"), minimum=1)
            method = payment.get("method") or "cash"
            if method not in PAYMENT_METHODS:
                raise ValidationError(
                    f"payment method must be one of: {', '.join(PAYMENT_METHODS)}",
                    fields={"payments": "invalid method"},
                )
            parsed.append({"amount_cents": amount, "method": method, "reference": payment.get("reference")})
        return parsed

    def _check_party(self, kind: str, customer_id, supplier_id) -> None:
        if customer_id is not None:
            if kind != "sale":
                raise ValidationError("customer_id is only valid on sale invoices", fields={"customer_id": "not allowed"})
            if self.session.get(Customer, customer_id) is None:
                raise ValidationError("customer_id does not exist", fields={"customer_id": "unknown reference"})
        if supplier_id is not None:
            if kind != "purchase":
                raise ValidationError("supplier_id is only valid on purchase invoices", fields={"supplier_id": "not allowed"})
            if self.session.get(Supplier, supplier_id) is None:
                raise ValidationError("supplier_id does not exist", fields={"supplier_id": "unknown reference"})

    def create(
        self,
        *,
        kind: str,
        items,
        invoice_number: str | None = None,
        customer_id: str | None = None,
        supplier_id: str | None = None,
        party_name: str | None = None,
        party_phone: str | None = None,
        discount_cents: int = 0,
        payments=(),
        note: str | None = None,
        user_id: str | None = None,
        business_id: str | None = None,
    ) -> Invoice:
        if kind not in INVOICE_KINDS:
            raise ValidationError(f"kind must be one of: {', '.join(INVOICE_KINDS)}", fields={"kind": "invalid"})
        lines = self._parse_items(items)
        paid = self._parse_payments(payments)
        discount_cents = _require_int("discount_cents", discount_cents or 0, minimum=0)
        self._check_party(kind, customer_id, supplier_id)

        if invoice_number is not None:
            invoice_number = str(invoice_number).strip()
            if not invoice_number:
                raise ValidationError("invoice_number cannot be blank", fields={"invoice_number": "required"})
            if self.session.query(Invoice.id).filter(Invoice.invoice_number == invoice_number).first():
                raise ValidationError(
                    f"invoice_number already exists: {invoice_number}",
                    fields={"invoice_number": "duplicate"},
                )

        auto_numbered = invoice_number is None

        def _op():
            invoice = Invoice(
                id=new_id(),
                invoice_number=invoice_number or self.next_invoice_number(kind),
                kind=kind,
                customer_id=customer_id,
                supplier_id=supplier_id,
                party_name=party_name,
                party_phone=party_phone,
                discount_cents=discount_cents,
                note=note,
                created_by_user_id=user_id,
                business_id=business_id,
            )
            self.session.add(invoice)
            self._save(auto_numbered, self.session.flush)

            subtotal = 0
            tax = 0
            for number, line in enumerate(lines, start=1):
                product = (
                    self.session.query(Product)
                    .filter(Product.id == line["product_id"], Product.deleted_at.is_(None))
                    .first()
                )
                if product is None:
                    raise NotFoundError(f"item {number - 1}: product not found")

                price = line["unit_price_cents"]
                if price is None:
                    price = product.price_cents if kind == "sale" else (product.cost_price_cents or 0)
                line_total = line["quantity"] * price
                line_tax = line_tax_cents(line_total, product.tax_rate_bps)
                subtotal += line_total
                tax += line_tax

                self.session.add(InvoiceItem(
                    invoice_id=invoice.id,
                    line_number=number,
                    product_id=product.id,
                    product_name=product.name,
                    sku=product.sku,
                    unit_price_cents=price,
                    tax_rate_bps=product.tax_rate_bps,
                    quantity=line["quantity"],
                    line_total_cents=line_total,
                    tax_cents=line_tax,
                ))
                self.ledger.apply_movement(
                    product_id=product.id,
                    kind=kind,
                    quantity=MOVEMENT_SIGN[kind] * line["quantity"],
                    invoice_id=invoice.id,
                    note=f"{invoice.invoice_number} line {number}",
                    user_id=user_id,
                )

            if discount_cents > subtotal:
                raise ValidationError("discount_cents cannot exceed the subtotal", fields={"discount_cents": "too large"})

            invoice.subtotal_cents = subtotal
            invoice.tax_cents = tax
            invoice.total_cents = subtotal - discount_cents + tax

            paid_total = sum(p["amount_cents"] for p in paid)
            if paid_total > invoice.total_cents:
                raise ValidationError("payments exceed the invoice total", fields={"payments": "overpaid"})
            for p in paid:
                self.session.add(Payment(invoice_id=invoice.id, **p))
            invoice.paid_cents = paid_total
            invoice.status = derive_status(invoice.total_cents, paid_total)

            self._save(auto_numbered, self.session.commit)
            logger.info(
                "Posted %s invoice %s: %d line(s), total %d",
                kind, invoice.invoice_number, len(lines), invoice.total_cents,
            )
            return invoice

        product_ids = [line["product_id"] for line in lines]
        with self.ledger.locks.hold(*product_ids):
            return self._write(_op, "create invoice")

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    def add_payment(
        self,
        invoice_id: str,
        *,
        amount_cents: int,
        method: str = "cash",
        reference: str | None = None,
    ) -> Payment:
        (payment_fields,) = self._parse_payments([
            {"amount_cents": amount_cents, "method": method, "reference": reference},
        ])

        def _op():
            invoice = (
                lock_for_update(
                    self.session.query(Invoice)
                    .filter(Invoice.id == invoice_id, Invoice.deleted_at.is_(None))
                )
                .populate_existing()
                .first()
            )
            if invoice is None:
                raise NotFoundError("Invoice not found")
            if payment_fields["amount_cents"] > invoice.balance_cents:
                raise ValidationError(
                    f"payment exceeds outstanding balance of {invoice.balance_cents}",
                    fields={"amount_cents": "overpaid"},
                )
            payment = Payment(invoice_id=invoice.id, **payment_fields)
            self.session.add(payment)
            invoice.paid_cents += payment_fields["amount_cents"]
            invoice.status = derive_status(invoice.total_cents, invoice.paid_cents)
            self.session.commit()
            return payment

        return self._write(_op, "record payment")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, invoice_id: str) -> Invoice | None:
        return (
            self.session.query(Invoice)
            .filter(Invoice.id == invoice_id, Invoice.deleted_at.is_(None))
            .first()
        )

    def list(self, filters: dict | None = None) -> list:
        if filters is None:
            filters = {}
        if not isinstance(filters, dict):
            raise ValidationError("filter must be an object", fields={"filter": "invalid"})
        filters = {k: v for k, v in filters.items() if v not in (None, "")}
        unknown = set(filters) - LIST_FILTERS
        if unknown:
            raise ValidationError(f"Unknown filter: {', '.join(sorted(unknown))}")
        if "kind" in filters and filters["kind"] not in INVOICE_KINDS:
            raise ValidationError("kind must be sale or purchase", fields={"kind": "invalid"})
        if "status" in filters and filters["status"] not in INVOICE_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(INVOICE_STATUSES)}", fields={"status": "invalid"})

        query = self.session.query(Invoice).filter(Invoice.deleted_at.is_(None))
        for key in ("kind", "status", "customer_id", "supplier_id"):
            if key in filters:
                query = query.filter(getattr(Invoice, key) == filters[key])
        term = str(filters.get("search", "")).strip()
        if term:
            pattern = f"%{escape_like(term)}%"
            query = query.filter(or_(
                Invoice.invoice_number.ilike(pattern, escape="\\"),
                Invoice.party_name.ilike(pattern, escape="\\"),
            ))
        return query.order_by(Invoice.issued_at.desc(), Invoice.created_at.desc()).all()

    def _write(self, op, action: str):
        try:
            return run_with_retry(
                self.session, op,
                attempts=self.ledger.retry_attempts, backoff_base=self.ledger.retry_backoff,
            )
        except StockbookError:
            self.session.rollback()
            raise
        except IntegrityError as exc:
            self.session.rollback()
            if "invoice_number" in str(getattr(exc, "orig", exc)).lower():
                raise ValidationError("invoice_number already exists", fields={"invoice_number": "duplicate"}) from exc
            raise StorageError(f"Could not {action}") from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Invoice write failed")
            raise StorageError(f"Could not {action}") from exc
