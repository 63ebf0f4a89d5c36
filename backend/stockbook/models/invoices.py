from __future__ import annotations

from ..extensions import db
from stockbook.time_utils import utcnow, to_utc_z
from .base import RecordMixin, new_id

INVOICE_KINDS = ("sale", "purchase")
INVOICE_STATUSES = ("unpaid", "partial", "paid")
PAYMENT_METHODS = ("cash", "card", "upi", "bank_transfer", "other")


class Invoice(RecordMixin, db.Model):
    """
    Sale or purchase document header.

    Posting an invoice records one stock movement per line (sale: negative,
    purchase: positive) in the same transaction as the header.
    party_name/party_phone snapshot who the invoice was issued to.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_number"),
        db.Index("ix_invoices_kind_issued", "kind", "issued_at"),
    )

    invoice_number = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="unpaid", index=True)

    customer_id = db.Column(db.String(32), db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.String(32), db.ForeignKey("suppliers.id"), nullable=True, index=True)
    party_name = db.Column(db.String(255), nullable=True)
    party_phone = db.Column(db.String(64), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)

    note = db.Column(db.Text, nullable=True)
    issued_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    created_by_user_id = db.Column(db.String(64), nullable=True)

    customer = db.relationship("Customer")
    supplier = db.relationship("Supplier")
    items = db.relationship(
        "InvoiceItem",
        backref="invoice",
        lazy=True,
        order_by="InvoiceItem.line_number",
    )
    payments = db.relationship(
        "Payment",
        backref="invoice",
        lazy=True,
        order_by="Payment.paid_at",
    )

    @property
    def balance_cents(self) -> int:
        return max(0, self.total_cents - self.paid_cents)

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} kind={self.kind} status={self.status}>"

    def to_dict(self, include_lines: bool = False) -> dict:
        data = self._record_dict()
        data.update({
            "invoice_number": self.invoice_number,
            "kind": self.kind,
            "status": self.status,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "party_name": self.party_name,
            "party_phone": self.party_phone,
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_cents": self.balance_cents,
            "note": self.note,
            "issued_at": to_utc_z(self.issued_at),
            "created_by_user_id": self.created_by_user_id,
        })
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
        return data


class InvoiceItem(db.Model):
    """
    Invoice line. Name, SKU, price and tax rate are copied from the product at
    posting time so later product edits do not rewrite history.
    """
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.UniqueConstraint("invoice_id", "line_number", name="uq_invoice_items_line"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    invoice_id = db.Column(db.String(32), db.ForeignKey("invoices.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=False)
    sku = db.Column(db.String(64), nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    quantity = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "line_number": self.line_number,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "sku": self.sku,
            "unit_price_cents": self.unit_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "quantity": self.quantity,
            "line_total_cents": self.line_total_cents,
            "tax_cents": self.tax_cents,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    __tablename__ = "payments"

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    invoice_id = db.Column(db.String(32), db.ForeignKey("invoices.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    method = db.Column(db.String(32), nullable=False, default="cash")
    reference = db.Column(db.String(128), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "method": self.method,
            "reference": self.reference,
            "paid_at": to_utc_z(self.paid_at),
        }
