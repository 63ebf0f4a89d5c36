# Overview: Error taxonomy shared by services and the request/response boundary.

"""
Every failure that crosses the API boundary is one of these. Services raise
them; routes turn them into the uniform ``{"success": false, ...}`` envelope.

- ValidationError: caller input is wrong (missing field, duplicate SKU). Fix and resend.
- NotFoundError: the id does not exist or is soft-deleted.
- StorageError: persistence failed and nothing was applied. Safe to retry.
- ConcurrencyConflict: an optimistic check saw stale stock. Retried internally,
  surfaced as StorageError once retries run out.
- IdentityError: the bearer token could not be verified.
"""
from __future__ import annotations


class StockbookError(Exception):
    error_type = "error"
    status_code = 500

    def __init__(self, message: str, *, fields: dict | None = None):
        super().__init__(message)
        self.message = message
        self.fields = fields or None

    def to_dict(self) -> dict:
        body = {
            "success": False,
            "error": self.message,
            "error_type": self.error_type,
        }
        if self.fields:
            body["fields"] = self.fields
        return body


class ValidationError(StockbookError, ValueError):
    """400-level input problem (missing field, bad type, duplicate business key)."""
    error_type = "validation"
    status_code = 400


class NotFoundError(StockbookError, LookupError):
    error_type = "not_found"
    status_code = 404


class StorageError(StockbookError):
    """Persistence or transaction failure; no partial state was left behind."""
    error_type = "storage"
    status_code = 503


class ConcurrencyConflict(StorageError):
    error_type = "conflict"


class IdentityError(StockbookError):
    error_type = "unauthorized"
    status_code = 401
