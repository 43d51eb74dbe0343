from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .models import EMPLOYEE_ROLES


# Maximum price: $9,999,999.99 (999,999,999 cents)
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    - writable_fields: what clients are allowed to set
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "description", "category_id", "supplier_id",
        "price_cents", "cost_cents", "stock", "min_stock", "is_active",
    },
    required_on_create={"sku", "name", "price_cents", "cost_cents"},
)

# Stock only moves through the inventory service once a product exists
PRODUCT_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=PRODUCT_POLICY.writable_fields - {"stock"},
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"first_name", "last_name", "email", "phone"},
    required_on_create={"first_name", "last_name"},
)

EMPLOYEE_POLICY = ModelValidationPolicy(
    writable_fields={"first_name", "last_name", "email", "role", "is_active"},
    required_on_create={"first_name", "last_name", "email"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description"},
    required_on_create={"name"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "contact_name", "email", "phone", "is_active"},
    required_on_create={"name"},
)


_PLAIN_INT = re.compile(r"^-?\d+$")


def _coerce_int(key: str, value: Any) -> int:
    # bool is an int subclass; JSON true/false is never a quantity or price
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    if isinstance(value, str) and _PLAIN_INT.match(value.strip()):
        return int(value.strip())
    raise ValidationError(f"{key} must be a plain integer")


def _coerce_bool(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{key} must be true or false")
    return value


def _coerce_text(key: str, value: Any) -> str:
    if isinstance(value, (dict, list)):
        raise ValidationError(f"{key} must be a string")
    return str(value).strip()


_COERCERS = (
    (Boolean, _coerce_bool),
    (Integer, _coerce_int),
    ((String, Text), _coerce_text),
)


def _coerce(column, value: Any):
    for coltype, coerce in _COERCERS:
        if isinstance(column.type, coltype):
            return coerce(column.key, value)
    return value


def _check_text(column, value: str) -> None:
    if value == "" and not column.nullable:
        raise ValidationError(f"{column.key} cannot be blank")
    length = getattr(column.type, "length", None)
    if length and len(value) > length:
        raise ValidationError(f"{column.key} exceeds max length {length}")
    if column.key == "email" and value and "@" not in value:
        raise ValidationError("email must contain '@'")


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn a JSON body into a patch dict for one model.

    Only keys in policy.writable_fields are accepted. Values are coerced by
    column type and checked against nullability and String length. With
    partial=False every required_on_create key must be present.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted((policy.required_on_create or set()) - payload.keys())
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    columns = {c.key: c for c in model.__mapper__.columns}
    rejected = [k for k in payload if k not in policy.writable_fields or k not in columns]
    if rejected:
        raise ValidationError(f"Field not allowed: {rejected[0]}")

    patch: dict = {}
    for key, raw in payload.items():
        column = columns[key]
        if raw is None:
            if not column.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce(column, raw)
        if isinstance(value, str):
            _check_text(column, value)
        patch[key] = value

    return patch


def enforce_rules_product(patch: dict, *, current: dict | None = None) -> None:
    """
    Catalog rules mirrored from the products table CHECK constraints.

    `current` holds the stored values for a partial update so the
    price/cost comparison sees the merged row.
    """
    merged = dict(current or {})
    merged.update(patch)

    for field in ("price_cents", "cost_cents"):
        value = patch.get(field)
        if value is None:
            continue
        if value <= 0:
            raise ValidationError(f"{field} must be > 0")
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")

    price = merged.get("price_cents")
    cost = merged.get("cost_cents")
    if price is not None and cost is not None and price <= cost:
        raise ValidationError("price_cents must be greater than cost_cents")

    if patch.get("stock") is not None and patch["stock"] < 0:
        raise ValidationError("stock must be >= 0")

    if patch.get("min_stock") is not None and patch["min_stock"] <= 0:
        raise ValidationError("min_stock must be > 0")


def enforce_rules_employee(patch: dict) -> None:
    role = patch.get("role")
    if role is not None and role not in EMPLOYEE_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(EMPLOYEE_ROLES)}")
