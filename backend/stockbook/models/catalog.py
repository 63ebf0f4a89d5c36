from __future__ import annotations

from ..extensions import db
from .base import RecordMixin


class Product(RecordMixin, db.Model):
    """
    Product master data.

    STOCK: stock_qty is a cache of the movement ledger. It is written only by
    the stock ledger, in the same transaction as the StockMovement that
    explains the change. initial_stock_qty is the quantity the product was
    created with and is the origin when folding the movement history.

    SKU is the business key: unique, fixed after creation.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("sku", name="uq_products_sku"),
        db.Index("ix_products_name", "name"),
        db.Index("ix_products_category", "category_id"),
        db.Index("ix_products_supplier", "supplier_id"),
    )

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    barcode = db.Column(db.String(128), nullable=True, index=True)

    # Weak references: soft-deleted parents stay resolvable, nothing cascades.
    category_id = db.Column(db.String(32), db.ForeignKey("categories.id"), nullable=True)
    supplier_id = db.Column(db.String(32), db.ForeignKey("suppliers.id"), nullable=True)

    # Authoritative storage in cents
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    cost_price_cents = db.Column(db.Integer, nullable=True)
    # Tax percentage in basis points (18% -> 1800)
    tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    stock_qty = db.Column(db.Integer, nullable=False, default=0)
    initial_stock_qty = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    unit = db.Column(db.String(32), nullable=False, default="pcs")
    image_url = db.Column(db.String(512), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} stock_qty={self.stock_qty}>"

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_qty <= 0

    @property
    def is_low_stock(self) -> bool:
        return 0 < self.stock_qty <= self.low_stock_threshold

    def to_dict(self) -> dict:
        data = self._record_dict()
        data.update({
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "barcode": self.barcode,
            "category_id": self.category_id,
            "supplier_id": self.supplier_id,
            "price_cents": self.price_cents,
            "cost_price_cents": self.cost_price_cents,
            "tax_rate_bps": self.tax_rate_bps,
            "stock_qty": self.stock_qty,
            "initial_stock_qty": self.initial_stock_qty,
            "low_stock_threshold": self.low_stock_threshold,
            "unit": self.unit,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "is_low_stock": self.is_low_stock,
            "is_out_of_stock": self.is_out_of_stock,
            "version_id": self.version_id,
        })
        return data


class Category(RecordMixin, db.Model):
    __tablename__ = "categories"

    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        data = self._record_dict()
        data.update({
            "name": self.name,
            "description": self.description,
            "is_active": self.is_active,
        })
        return data


class Supplier(RecordMixin, db.Model):
    """
    Vendor products are purchased from. Referenced by products and purchase
    invoices; soft delete keeps those references resolvable.
    """
    __tablename__ = "suppliers"

    name = db.Column(db.String(255), nullable=False, index=True)
    contact_person = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(64), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    def __repr__(self) -> str:
        return f"<Supplier id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        data = self._record_dict()
        data.update({
            "name": self.name,
            "contact_person": self.contact_person,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "is_active": self.is_active,
        })
        return data
