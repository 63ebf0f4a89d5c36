from __future__ import annotations

import uuid

from ..extensions import db
from stockbook.time_utils import utcnow, to_utc_z


def new_id() -> str:
    """Opaque record id (UUID4, hex)."""
    return uuid.uuid4().hex


class RecordMixin:
    """
    Columns shared by every stored record.

    deleted_at: soft delete. Rows are never physically removed so that
    movements and invoice lines keep resolving their references.
    business_id: reserved for multi-branch partitioning; not used by the
    ledger logic.
    """
    id = db.Column(db.String(32), primary_key=True, default=new_id)
    business_id = db.Column(db.String(64), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deleted_at = db.Column(db.DateTime, nullable=True, index=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def _record_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "deleted_at": to_utc_z(self.deleted_at),
            "is_deleted": self.is_deleted,
        }
