# Overview: Service-layer operations for the stock movement ledger.

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import (
    ConcurrencyConflict,
    NotFoundError,
    StockbookError,
    StorageError,
    ValidationError,
)
from ..models import Product, StockMovement
from ..validation import enforce_rules_movement, require_record_id
from .base import SessionService
from .concurrency import ProductLockRegistry, is_sequence_conflict, lock_for_update, run_with_retry

logger = logging.getLogger(__name__)
"""
Stock Ledger Invariants (authoritative)

- stock_movements is append-only; a movement is never updated or deleted.
- Product.stock_qty is a cache of the ledger: it always equals quantity_after of
  the product's latest movement, or initial_stock_qty when it never moved.
- Every accepted movement has quantity_after = quantity_before + quantity and
  quantity_before = stock_qty at acceptance.
- The movement insert and the stock_qty update commit together or not at all.

Serialization:
- Same product: one writer at a time (in-process lock + SELECT ... FOR UPDATE).
  A writer in another process that read stale stock is caught at flush time by
  Product.version_id or by the unique (product_id, sequence) key and retried.
- Different products never share a lock.

Negative stock:
- Allowed by default (overselling shows up as is_out_of_stock). With
  allow_negative=False a movement that would take stock below zero is rejected.
"""

MAX_NOTE_LENGTH = 255


@dataclass
class BatchEntryResult:
    index: int
    movement: Optional[StockMovement] = None
    error: Optional[StockbookError] = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict:
        if self.error is None:
            return {"index": self.index, "success": True, "data": self.movement.to_dict()}
        body = self.error.to_dict()
        body["index"] = self.index
        return body


def _integrity_failure(exc: IntegrityError) -> StorageError:
    if is_sequence_conflict(exc):
        return ConcurrencyConflict("stock changed while recording movement")
    return StorageError("movement violates a storage constraint")


def _clean_note(note) -> str | None:
    if note is None:
        return None
    note = str(note).strip()
    if len(note) > MAX_NOTE_LENGTH:
        raise ValidationError(f"note exceeds max length {MAX_NOTE_LENGTH}", fields={"note": "too long"})
    return note or None


class StockLedger(SessionService):
    def __init__(
        self,
        session,
        *,
        locks: ProductLockRegistry | None = None,
        retry_attempts: int = 3,
        retry_backoff: float = 0.05,
        allow_negative: bool = True,
    ):
        super().__init__(session)
        # A private registry only serializes callers sharing this instance;
        # the application passes its process-wide registry.
        self.locks = locks if locks is not None else ProductLockRegistry()
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.allow_negative = allow_negative

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply_movement(
        self,
        *,
        product_id: str,
        kind: str,
        quantity: int,
        invoice_id: str | None = None,
        note: str | None = None,
        user_id: str | None = None,
        business_id: str | None = None,
    ) -> StockMovement:
        """
        Core movement logic without locking, retry, or commit.

        Runs inside the caller's transaction and flushes. Callers must hold the
        product's lock (see ProductLockRegistry.hold) and own commit/rollback.
        """
        quantity = enforce_rules_movement(kind, quantity)

        product = (
            lock_for_update(self.session.query(Product).filter(Product.id == product_id))
            .populate_existing()
            .first()
        )
        if product is None or product.deleted_at is not None:
            raise NotFoundError("Product not found")

        quantity_before = product.stock_qty
        quantity_after = quantity_before + quantity
        if quantity_after < 0 and not self.allow_negative:
            raise ValidationError(
                f"{kind} of {abs(quantity)} would take stock of {product.sku} below zero "
                f"(on hand: {quantity_before})",
                fields={"quantity": "insufficient stock"},
            )

        last_sequence = (
            self.session.query(func.max(StockMovement.sequence))
            .filter(StockMovement.product_id == product_id)
            .scalar()
        )

        movement = StockMovement(
            product_id=product_id,
            invoice_id=invoice_id,
            kind=kind,
            quantity=quantity,
            quantity_before=quantity_before,
            quantity_after=quantity_after,
            sequence=(last_sequence or 0) + 1,
            note=_clean_note(note),
            user_id=user_id,
            business_id=business_id if business_id is not None else product.business_id,
        )
        self.session.add(movement)
        product.stock_qty = quantity_after
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise _integrity_failure(exc) from exc

        logger.info(
            "Stock %s for %s: %d %+d -> %d (seq %d)",
            kind, product.sku, quantity_before, quantity, quantity_after, movement.sequence,
        )
        return movement

    def _commit_or_conflict(self) -> None:
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise _integrity_failure(exc) from exc

    def _run(self, op):
        """Retry wrapper that guarantees a rolled-back session on every failure path."""
        try:
            return run_with_retry(
                self.session, op,
                attempts=self.retry_attempts, backoff_base=self.retry_backoff,
            )
        except StockbookError:
            self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Stock movement failed")
            raise StorageError("could not record stock movement") from exc

    def record_movement(
        self,
        product_id: str,
        kind: str,
        quantity: int,
        *,
        invoice_id: str | None = None,
        note: str | None = None,
        user_id: str | None = None,
    ) -> StockMovement:
        """
        Accept one movement: read stock, append the movement, write the new
        stock, commit. All four happen under the product's lock and inside one
        transaction.
        """
        require_record_id("product_id", product_id)
        enforce_rules_movement(kind, quantity)

        def _op():
            movement = self.apply_movement(
                product_id=product_id,
                kind=kind,
                quantity=quantity,
                invoice_id=invoice_id,
                note=note,
                user_id=user_id,
            )
            self._commit_or_conflict()
            return movement

        with self.locks.hold(product_id):
            return self._run(_op)

    def record_movements(
        self,
        entries: Iterable[dict],
        *,
        atomic: bool = False,
        user_id: str | None = None,
    ) -> list[BatchEntryResult]:
        """
        Record many movements.

        atomic=False (default): each entry is its own transaction; a bad entry
        is reported in its result and does not undo the others.
        atomic=True: one transaction; the first failing entry rolls back the
        whole batch and its error is raised, prefixed with the entry index.
        """
        entries = list(entries)
        parsed = [self._parse_entry(i, entry) for i, entry in enumerate(entries)]

        if not atomic:
            results = []
            for i, fields in enumerate(parsed):
                try:
                    movement = self.record_movement(user_id=user_id, **fields)
                    results.append(BatchEntryResult(index=i, movement=movement))
                except StockbookError as exc:
                    logger.warning("Batch entry %d rejected: %s", i, exc.message)
                    results.append(BatchEntryResult(index=i, error=exc))
            return results

        def _op():
            movements = []
            for i, fields in enumerate(parsed):
                try:
                    movements.append(self.apply_movement(user_id=user_id, **fields))
                except (ValidationError, NotFoundError) as exc:
                    raise type(exc)(f"entry {i}: {exc.message}", fields=exc.fields) from exc
            self._commit_or_conflict()
            return movements

        with self.locks.hold(*[fields["product_id"] for fields in parsed]):
            movements = self._run(_op)
        return [BatchEntryResult(index=i, movement=m) for i, m in enumerate(movements)]

    @staticmethod
    def _parse_entry(index: int, entry) -> dict:
        if not isinstance(entry, dict):
            raise ValidationError(f"entry {index}: must be an object")
        missing = [k for k in ("product_id", "kind", "quantity") if entry.get(k) is None]
        if missing:
            raise ValidationError(
                f"entry {index}: missing {', '.join(missing)}",
                fields={k: "required" for k in missing},
            )
        unknown = set(entry) - {"product_id", "kind", "quantity", "invoice_id", "note"}
        if unknown:
            raise ValidationError(f"entry {index}: unknown fields {', '.join(sorted(unknown))}")
        try:
            require_record_id("product_id", entry["product_id"])
            enforce_rules_movement(entry["kind"], entry["quantity"])
        except ValidationError as exc:
            raise ValidationError(f"entry {index}: {exc.message}", fields=exc.fields) from exc
        return {
            "product_id": entry["product_id"],
            "kind": entry["kind"],
            "quantity": entry["quantity"],
            "invoice_id": entry.get("invoice_id"),
            "note": entry.get("note"),
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_history(self, product_id: str, limit: int | None = None) -> list[StockMovement]:
        """
        Movements for a product, newest first. Works for soft-deleted products
        (history outlives the product). An unknown product id is NotFoundError;
        a product that never moved gives [].
        """
        if self.session.get(Product, product_id) is None:
            raise NotFoundError("Product not found")

        query = (
            self.session.query(StockMovement)
            .filter(StockMovement.product_id == product_id)
            .order_by(StockMovement.created_at.desc(), StockMovement.sequence.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def verify(self, product_id: str) -> dict:
        """
        Fold the product's movements in sequence order starting from
        initial_stock_qty and compare with the cached stock_qty.
        """
        product = self.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")

        movements = (
            self.session.query(StockMovement)
            .filter(StockMovement.product_id == product_id)
            .order_by(StockMovement.sequence.asc())
            .all()
        )

        running = product.initial_stock_qty
        broken = []
        for movement in movements:
            if movement.quantity_before != running:
                broken.append({
                    "movement_id": movement.id,
                    "sequence": movement.sequence,
                    "problem": f"quantity_before {movement.quantity_before} != previous {running}",
                })
            if movement.quantity_after != movement.quantity_before + movement.quantity:
                broken.append({
                    "movement_id": movement.id,
                    "sequence": movement.sequence,
                    "problem": "quantity_after != quantity_before + quantity",
                })
            running = movement.quantity_after

        return {
            "product_id": product.id,
            "sku": product.sku,
            "initial_stock_qty": product.initial_stock_qty,
            "folded_qty": running,
            "stock_qty": product.stock_qty,
            "movement_count": len(movements),
            "consistent": not broken and running == product.stock_qty,
            "broken_links": broken,
        }
