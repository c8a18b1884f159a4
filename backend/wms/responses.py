# Overview: JSON envelope helpers shared by every blueprint.

from __future__ import annotations

from typing import Any

from flask import jsonify


def success(data: Any = None, message: str | None = None, status: int = 200):
    """Build a {success, data, message} response."""
    return jsonify({"success": True, "data": data, "message": message}), status


def failure(message: str, status: int = 422, errors: dict | None = None, details: dict | None = None):
    """Error envelope; `errors` carries per-field messages, `details` carries business context."""
    body: dict[str, Any] = {"success": False, "data": None, "message": message}
    if errors:
        body["errors"] = errors
    if details:
        body["details"] = details
    return jsonify(body), status
