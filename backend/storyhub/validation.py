from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Upper bound for story/chapter prices in coins
MAX_PRICE = 1_000_000

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = frozenset()  # type: ignore[assignment]


STORY_POLICY = ModelValidationPolicy(
    writable_fields={"slug", "name", "is_paid", "price"},
    required_on_create={"slug", "name"},
)

STORY_PRICING_POLICY = ModelValidationPolicy(
    writable_fields={"is_paid", "price"},
)

CHAPTER_POLICY = ModelValidationPolicy(
    writable_fields={"number", "name", "slug", "is_paid", "price", "status", "show_ads", "is_new"},
    required_on_create={"number", "name"},
)


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects floats, bools and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError("invalid_payload", f"{key} must be a plain integer")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError("invalid_payload", f"{key} must be an integer")
    raise ValidationError("invalid_payload", f"{key} must be an integer")


def coerce_bool(key: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValidationError("invalid_payload", f"{key} must be a boolean")
    # fallback: truthiness (numbers, None)
    return bool(value)


def coerce_price(value: Any, *, key: str = "price") -> int:
    """Prices are integers in coins, 0 <= price <= MAX_PRICE."""
    if value is None:
        raise ValidationError("invalid_price", f"{key} is required")
    try:
        price = coerce_int(key, value)
    except ValidationError as exc:
        raise ValidationError("invalid_price", exc.message)
    if price < 0:
        raise ValidationError("invalid_price", f"{key} must be >= 0")
    if price > MAX_PRICE:
        raise ValidationError("invalid_price", f"{key} cannot exceed {MAX_PRICE}")
    return price


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if isinstance(coltype, Integer):
        if col.key == "price":
            return coerce_price(value)
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        return coerce_bool(col.key, value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict | None,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("invalid_payload", "Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError("invalid_payload", f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationError("invalid_payload", f"Field not allowed: {k}")

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError("invalid_payload", f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            raise ValidationError("invalid_payload", f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError("invalid_payload", f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_chapter(patch: dict) -> None:
    """A chapter marked paid must carry a positive price."""
    if patch.get("is_paid") is True and "price" in patch and patch["price"] <= 0:
        raise ValidationError("invalid_price", "Paid chapters must have price > 0")
    if "number" in patch and patch["number"] < 0:
        raise ValidationError("invalid_payload", "number must be >= 0")
