# Overview: Query-string and body helpers for the API blueprints.

from __future__ import annotations

from datetime import datetime

from flask import request

from .validation import ValidationError, coerce_datetime


def arg_bool(name: str) -> bool | None:
    """"true"/"1" -> True, "false"/"0" -> False, absent -> None."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def arg_datetime(name: str) -> datetime | None:
    raw = request.args.get(name)
    if not raw:
        return None
    return coerce_datetime(raw, name)


def json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload
