from __future__ import annotations
from datetime import datetime
from wms.time_utils import parse_iso_datetime

from dataclasses import dataclass
from typing import Any, Iterable

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money amount: 9,999,999.99 (999,999,999 cents)
MAX_AMOUNT_CENTS = 999_999_999


class ValidationError(ValueError):
    """422-level input problem."""

    def __init__(self, message: str, errors: dict | None = None):
        super().__init__(message)
        self.errors = errors or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


class NotFoundError(LookupError):
    """404-level missing resource."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    - non_negative_fields: integer fields that must be >= 0
    - choices: allowed values for enumerated string columns
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore
    non_negative_fields: set[str] | None = None
    choices: dict[str, Iterable[str]] | None = None


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects floats, bools and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", {field: "must be an integer"})
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)",
                                  {field: "must be a plain integer"})
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", {field: "must be an integer"})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", {field: "must be an integer"})
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", {field: "must be an integer"})
    raise ValidationError(f"{field} must be an integer", {field: "must be an integer"})


def coerce_datetime(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", {field: "must be an ISO-8601 datetime"})
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", {field: "must be an ISO-8601 datetime"})
        return dt
    raise ValidationError(f"{field} must be a datetime", {field: "must be a datetime"})


def coerce_bool(value: Any) -> bool:
    """Form-style booleans: "false", "0", "no" and "off" are False."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        return coerce_bool(value)

    if isinstance(coltype, DateTime):
        return coerce_datetime(value, col.key)

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
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                {f: "is required" for f in missing},
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", {k: "not allowed"})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", {k: "unknown"})

    patch: dict = {}
    non_negative = policy.non_negative_fields or set()
    choices = policy.choices or {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", {k: "cannot be null"})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", {k: "cannot be blank"})

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}",
                                      {k: f"exceeds max length {col.type.length}"})

        if k in non_negative and isinstance(val, int) and val < 0:
            raise ValidationError(f"{k} must be >= 0", {k: "must be >= 0"})

        if k in choices and val not in set(choices[k]):
            allowed = ", ".join(sorted(choices[k]))
            raise ValidationError(f"{k} must be one of: {allowed}", {k: f"must be one of: {allowed}"})

        patch[k] = val

    return patch


def enforce_amount_cents(patch: dict, *fields: str) -> None:
    """Money columns are non-negative integer cents with a hard upper bound."""
    for field in fields:
        if field not in patch or patch[field] is None:
            continue
        amount = patch[field]
        if amount < 0:
            raise ValidationError(f"{field} must be >= 0", {field: "must be >= 0"})
        if amount > MAX_AMOUNT_CENTS:
            raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS}",
                                  {field: f"cannot exceed {MAX_AMOUNT_CENTS}"})


def require_items(payload: dict, key: str = "items") -> list[dict]:
    """Line-item arrays are required, non-empty lists of objects."""
    items = payload.get(key)
    if not isinstance(items, list) or not items:
        raise ValidationError(f"{key} must be a non-empty list", {key: "must be a non-empty list"})
    for idx, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"{key}[{idx}] must be an object", {f"{key}.{idx}": "must be an object"})
    return items


def item_int(
    item: dict,
    key: str,
    *,
    index: int,
    required: bool = True,
    default: int | None = None,
    minimum: int | None = None,
    prefix: str = "items",
) -> int | None:
    """Read one integer field from a line item, reporting errors as items.<index>.<key>."""
    field = f"{prefix}.{index}.{key}"
    raw = item.get(key)
    if raw is None:
        if required:
            raise ValidationError(f"{field} is required", {field: "is required"})
        return default
    value = coerce_int(raw, field)
    if minimum is not None and value < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", {field: f"must be >= {minimum}"})
    return value


def require_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    if value not in set(choices):
        allowed = ", ".join(choices)
        raise ValidationError(f"{field} must be one of: {allowed}", {field: f"must be one of: {allowed}"})
    return value
