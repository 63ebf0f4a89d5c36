from __future__ import annotations
from datetime import datetime
from stockbook.time_utils import parse_iso_datetime

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: 9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999

# 100% expressed in basis points
MAX_TAX_RATE_BPS = 10_000

MOVEMENT_KINDS = ("sale", "purchase", "adjustment", "return", "opening_stock")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for create
    - immutable_fields: writable on create, rejected on update
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)
    immutable_fields: frozenset[str] = field(default_factory=frozenset)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                raise ValidationError(f"{col.key} must be an integer", fields={col.key: "not an integer"})
            if 'e' in stripped.lower() or '.' in stripped:
                raise ValidationError(f"{col.key} must be a plain integer", fields={col.key: "not an integer"})
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer", fields={col.key: "not an integer"})
        raise ValidationError(f"{col.key} must be an integer", fields={col.key: "not an integer"})

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in {"true", "false", "1", "0"}:
            return value.strip().lower() in {"true", "1"}
        if isinstance(value, int):
            return bool(value)
        raise ValidationError(f"{col.key} must be a boolean", fields={col.key: "not a boolean"})

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                dt = None
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", fields={col.key: "not a datetime"})
            return dt
        raise ValidationError(f"{col.key} must be a datetime", fields={col.key: "not a datetime"})

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys, reject immutable ones)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(
            f for f in policy.required_on_create
            if payload.get(f) is None or (isinstance(payload.get(f), str) and not payload[f].strip())
        )
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                fields={f: "required" for f in missing},
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationError(f"Field not allowed: {k}", fields={k: "not allowed"})
        if partial and k in policy.immutable_fields:
            raise ValidationError(f"{k} cannot be changed after creation", fields={k: "immutable"})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", fields={k: "required"})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", fields={k: "required"})

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(
                    f"{k} exceeds max length {col.type.length}",
                    fields={k: "too long"},
                )

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    for key in ("price_cents", "cost_price_cents"):
        price = patch.get(key)
        if price is None:
            continue
        if price < 0:
            raise ValidationError(f"{key} must be >= 0", fields={key: "negative"})
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}", fields={key: "too large"})

    rate = patch.get("tax_rate_bps")
    if rate is not None and not 0 <= rate <= MAX_TAX_RATE_BPS:
        raise ValidationError(
            f"tax_rate_bps must be between 0 and {MAX_TAX_RATE_BPS}",
            fields={"tax_rate_bps": "out of range"},
        )

    threshold = patch.get("low_stock_threshold")
    if threshold is not None and threshold < 0:
        raise ValidationError("low_stock_threshold must be >= 0", fields={"low_stock_threshold": "negative"})


def enforce_rules_movement(kind: str, quantity: Any) -> int:
    """
    Validate a movement request and return the quantity as int.

    sale decreases stock; purchase, return and opening_stock increase it;
    adjustment may go either way and may be zero (an audit-only correction).
    """
    if kind not in MOVEMENT_KINDS:
        raise ValidationError(
            f"kind must be one of: {', '.join(MOVEMENT_KINDS)}",
            fields={"kind": "invalid"},
        )
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer", fields={"quantity": "not an integer"})

    if kind == "sale" and quantity >= 0:
        raise ValidationError("quantity must be < 0 for sale", fields={"quantity": "must be negative"})
    if kind in ("purchase", "return", "opening_stock") and quantity <= 0:
        raise ValidationError(f"quantity must be > 0 for {kind}", fields={"quantity": "must be positive"})
    return quantity


def require_record_id(name: str, value: Any) -> str:
    """Ids arrive from JSON; anything but a non-empty string is a caller error."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} must be a record id", fields={name: "invalid"})
    return value
