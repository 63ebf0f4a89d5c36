# Overview: Service-layer CRUD and filtered listing for products, categories, suppliers and customers.

"""
Inventory Store

One InventoryStore per entity kind, configured by an EntitySpec. All kinds
share the same contract:

- list(filters): live rows only (deleted_at IS NULL); all given filters are
  AND-combined; "search" is a case-insensitive substring matched against the
  kind's search fields, OR-combined. Products come newest first, reference
  records by name (case-insensitive).
- get(id): the live row or None.
- resolve(id): the row even when soft-deleted (historical lookups); None only
  when the id never existed.
- create / update: payload validated against column metadata and the kind's
  policy; business keys (SKU) must be unique.
- soft_delete(id): stamps deleted_at once; repeating it changes nothing.

Product.stock_qty is only writable on create. Afterwards it changes through
the stock ledger and nowhere else.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..errors import NotFoundError, StockbookError, StorageError, ValidationError
from ..models import Category, Customer, Product, Supplier
from ..validation import ModelValidationPolicy, enforce_rules_product, validate_payload
from stockbook.time_utils import utcnow
from .base import SessionService
from .concurrency import run_with_retry

ORDER_NEWEST_FIRST = "newest_first"
ORDER_BY_NAME = "by_name"

# camelCase filter names used by the desktop client
FILTER_ALIASES = {
    "categoryId": "category_id",
    "supplierId": "supplier_id",
    "isActive": "is_active",
}


@dataclass(frozen=True)
class EntitySpec:
    model: Any
    label: str
    policy: ModelValidationPolicy
    search_fields: tuple[str, ...]
    filter_fields: frozenset[str] = field(default_factory=frozenset)
    order: str = ORDER_BY_NAME
    business_keys: tuple[str, ...] = ()
    reference_fields: dict = field(default_factory=dict)
    rules: Callable[[dict], None] | None = None


PRODUCT_SPEC = EntitySpec(
    model=Product,
    label="Product",
    policy=ModelValidationPolicy(
        writable_fields=frozenset({
            "sku", "name", "description", "barcode", "category_id", "supplier_id",
            "price_cents", "cost_price_cents", "tax_rate_bps", "stock_qty",
            "low_stock_threshold", "unit", "image_url", "is_active", "business_id",
        }),
        required_on_create=frozenset({"sku", "name"}),
        immutable_fields=frozenset({"sku", "stock_qty"}),
    ),
    search_fields=("name", "sku", "barcode"),
    filter_fields=frozenset({"category_id", "supplier_id"}),
    order=ORDER_NEWEST_FIRST,
    business_keys=("sku",),
    reference_fields={"category_id": Category, "supplier_id": Supplier},
    rules=enforce_rules_product,
)

CATEGORY_SPEC = EntitySpec(
    model=Category,
    label="Category",
    policy=ModelValidationPolicy(
        writable_fields=frozenset({"name", "description", "is_active", "business_id"}),
        required_on_create=frozenset({"name"}),
    ),
    search_fields=("name",),
)

SUPPLIER_SPEC = EntitySpec(
    model=Supplier,
    label="Supplier",
    policy=ModelValidationPolicy(
        writable_fields=frozenset({
            "name", "contact_person", "phone", "email", "address", "is_active", "business_id",
        }),
        required_on_create=frozenset({"name"}),
    ),
    search_fields=("name", "phone", "email"),
)

CUSTOMER_SPEC = EntitySpec(
    model=Customer,
    label="Customer",
    policy=ModelValidationPolicy(
        writable_fields=frozenset({"name", "phone", "email", "address", "is_active", "business_id"}),
        required_on_create=frozenset({"name"}),
    ),
    search_fields=("name", "phone", "email"),
)

ENTITY_SPECS = {
    "products": PRODUCT_SPEC,
    "categories": CATEGORY_SPEC,
    "suppliers": SUPPLIER_SPEC,
    "customers": CUSTOMER_SPEC,
}


def escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _coerce_flag(name: str, value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "1", "yes"}:
        return True
    if isinstance(value, str) and value.strip().lower() in {"false", "0", "no"}:
        return False
    raise ValidationError(f"{name} must be true or false", fields={name: "not a boolean"})


class InventoryStore(SessionService):
    def __init__(self, session, spec: EntitySpec, *, retry_attempts: int = 3, retry_backoff: float = 0.05):
        super().__init__(session)
        self.spec = spec
        self.model = spec.model
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def normalize_filters(self, filters: dict | None) -> dict:
        if filters is None:
            filters = {}
        if not isinstance(filters, dict):
            raise ValidationError("filter must be an object", fields={"filter": "invalid"})
        allowed = {"search", "is_active"} | set(self.spec.filter_fields)
        normalized = {}
        for key, value in filters.items():
            key = FILTER_ALIASES.get(key, key)
            if key not in allowed:
                raise ValidationError(f"Unknown filter: {key}", fields={key: "not allowed"})
            if value is None or value == "":
                continue
            normalized[key] = _coerce_flag(key, value) if key == "is_active" else value
        return normalized

    def list(self, filters: dict | None = None) -> list:
        filters = self.normalize_filters(filters)
        model = self.model

        query = self.session.query(model).filter(model.deleted_at.is_(None))

        term = str(filters.get("search", "")).strip()
        if term:
            pattern = f"%{escape_like(term)}%"
            query = query.filter(or_(*[
                getattr(model, name).ilike(pattern, escape="\\")
                for name in self.spec.search_fields
            ]))

        for name in self.spec.filter_fields:
            if name in filters:
                query = query.filter(getattr(model, name) == filters[name])

        if "is_active" in filters:
            query = query.filter(model.is_active.is_(filters["is_active"]))

        if self.spec.order == ORDER_NEWEST_FIRST:
            query = query.order_by(model.created_at.desc(), model.id.desc())
        else:
            query = query.order_by(func.lower(model.name).asc(), model.id.asc())

        try:
            return query.all()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Could not list {self.spec.label.lower()} records") from exc

    def get(self, record_id: str):
        return (
            self.session.query(self.model)
            .filter(self.model.id == record_id, self.model.deleted_at.is_(None))
            .first()
        )

    def resolve(self, record_id: str):
        """Row by id including soft-deleted ones; callers check ``is_deleted``."""
        return self.session.get(self.model, record_id)

    def require(self, record_id: str):
        record = self.get(record_id)
        if record is None:
            raise NotFoundError(f"{self.spec.label} not found")
        return record

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _check_business_keys(self, patch: dict, exclude_id: str | None = None) -> None:
        for key in self.spec.business_keys:
            if key not in patch or patch[key] is None:
                continue
            query = self.session.query(self.model.id).filter(getattr(self.model, key) == patch[key])
            if exclude_id is not None:
                query = query.filter(self.model.id != exclude_id)
            # Soft-deleted rows keep their key: history still points at them.
            if query.first() is not None:
                raise ValidationError(
                    f"{key} already exists: {patch[key]}",
                    fields={key: "duplicate"},
                )

    def _check_references(self, patch: dict) -> None:
        for key, ref_model in self.spec.reference_fields.items():
            ref_id = patch.get(key)
            if ref_id is not None and self.session.get(ref_model, ref_id) is None:
                raise ValidationError(f"{key} does not exist", fields={key: "unknown reference"})

    def _integrity_error(self, exc: IntegrityError) -> ValidationError:
        message = str(getattr(exc, "orig", exc)).lower()
        for key in self.spec.business_keys:
            if key in message:
                return ValidationError(f"{key} already exists", fields={key: "duplicate"})
        return ValidationError(f"{self.spec.label} violates a uniqueness constraint")

    def create(self, payload: dict):
        patch = validate_payload(model=self.model, payload=payload, policy=self.spec.policy, partial=False)
        if self.spec.rules:
            self.spec.rules(patch)
        self._check_business_keys(patch)
        self._check_references(patch)

        record = self.model()
        for key, value in patch.items():
            setattr(record, key, value)
        if self.model is Product:
            record.stock_qty = patch.get("stock_qty") or 0
            record.initial_stock_qty = record.stock_qty

        try:
            self.session.add(record)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise self._integrity_error(exc) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Could not create {self.spec.label.lower()}") from exc
        return record

    def update(self, record_id: str, payload: dict):
        if self.model is Product and "stock_qty" in (payload or {}):
            raise ValidationError(
                "stock_qty changes only through stock movements",
                fields={"stock_qty": "use stock movements"},
            )
        patch = validate_payload(model=self.model, payload=payload, policy=self.spec.policy, partial=True)
        if self.spec.rules:
            self.spec.rules(patch)
        self._check_business_keys(patch, exclude_id=record_id)
        self._check_references(patch)

        def _op():
            # Re-read on every attempt: a concurrent stock movement bumps version_id.
            record = self.require(record_id)
            for key, value in patch.items():
                setattr(record, key, value)
            record.updated_at = utcnow()
            self.session.commit()
            return record

        return self._write(_op, "update")

    def soft_delete(self, record_id: str):
        """
        Stamp deleted_at. Idempotent: a second call returns the row untouched,
        keeping the first timestamp. Nothing cascades: movements and invoice
        lines keep pointing at the row.
        """
        def _op():
            record = self.resolve(record_id)
            if record is None:
                raise NotFoundError(f"{self.spec.label} not found")
            if record.deleted_at is None:
                record.deleted_at = utcnow()
                self.session.commit()
            return record

        return self._write(_op, "delete")

    def _write(self, op, action: str):
        try:
            return run_with_retry(
                self.session, op,
                attempts=self.retry_attempts, backoff_base=self.retry_backoff,
            )
        except StockbookError:
            self.session.rollback()
            raise
        except IntegrityError as exc:
            self.session.rollback()
            raise self._integrity_error(exc) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageError(f"Could not {action} {self.spec.label.lower()}") from exc
