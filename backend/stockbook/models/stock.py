from __future__ import annotations

from sqlalchemy import event

from ..extensions import db
from ..errors import StorageError
from stockbook.time_utils import utcnow, to_utc_z
from .base import new_id


class StockMovement(db.Model):
    """
    Append-only stock ledger row.

    Invariants:
    - quantity_after = quantity_before + quantity
    - quantity_before equals the product's stock_qty when the movement was accepted
    - sequence is 1, 2, 3 ... per product; (product_id, sequence) is unique, so two
      writers that both read the same stock cannot both commit
    - rows are never updated or deleted (enforced by the mapper listeners below)
    """
    __tablename__ = "stock_movements"
    __table_args__ = (
        db.UniqueConstraint("product_id", "sequence", name="uq_stock_movements_product_sequence"),
        db.Index("ix_stock_movements_product_created", "product_id", "created_at"),
    )

    id = db.Column(db.String(32), primary_key=True, default=new_id)
    business_id = db.Column(db.String(64), nullable=True, index=True)

    product_id = db.Column(db.String(32), db.ForeignKey("products.id"), nullable=False)
    invoice_id = db.Column(db.String(32), db.ForeignKey("invoices.id"), nullable=True, index=True)

    kind = db.Column(db.String(32), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)
    quantity_before = db.Column(db.Integer, nullable=False)
    quantity_after = db.Column(db.Integer, nullable=False)
    sequence = db.Column(db.Integer, nullable=False)

    note = db.Column(db.String(255), nullable=True)
    user_id = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")

    def __repr__(self) -> str:
        return (
            f"<StockMovement id={self.id} product_id={self.product_id} kind={self.kind} "
            f"{self.quantity_before}{self.quantity:+d}={self.quantity_after}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "product_id": self.product_id,
            "invoice_id": self.invoice_id,
            "kind": self.kind,
            "quantity": self.quantity,
            "quantity_before": self.quantity_before,
            "quantity_after": self.quantity_after,
            "sequence": self.sequence,
            "note": self.note,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


@event.listens_for(StockMovement, "before_update")
def _block_movement_update(mapper, connection, target):
    raise StorageError(f"stock movement {target.id} is immutable")


@event.listens_for(StockMovement, "before_delete")
def _block_movement_delete(mapper, connection, target):
    raise StorageError(f"stock movement {target.id} cannot be deleted")
