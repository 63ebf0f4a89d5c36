# Overview: Uniform success/failure envelope for every API response.

from __future__ import annotations

from flask import jsonify, request

from .errors import StockbookError, ValidationError


def ok(data=None, status: int = 200):
    return jsonify({"success": True, "data": data}), status


def fail(exc: StockbookError):
    return jsonify(exc.to_dict()), exc.status_code


def json_object() -> dict:
    """Request body as a dict. A missing body is {}; any other JSON value is rejected."""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload
