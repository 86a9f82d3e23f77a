from __future__ import annotations
from datetime import datetime
from flowdesk.time_utils import parse_iso_datetime, as_utc_naive

import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# Basis points: 10000 = 100%
MAX_BPS = 10_000

EMAIL_RE = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,3})+$")
PHONE_RE = re.compile(r"^\+?[1-9]\d{1,14}$")


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


class NotFoundError(LookupError):
    """404-level missing or foreign-owner entity."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(field: str, value: Any) -> int:
    """Strict integer coercion: rejects floats, bools, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_datetime(field: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc_naive(value)
    if isinstance(value, str):
        try:
            dt = parse_iso_datetime(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        if dt is None:
            raise ValidationError(f"{field} must be an ISO-8601 datetime")
        return dt
    raise ValidationError(f"{field} must be a datetime")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        # fallback: truthiness
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        return coerce_datetime(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
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
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def require_choice(field: str, value: Any, choices) -> None:
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")


def _check_cents(field: str, value: int | None) -> None:
    if value is None:
        return
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} ({MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    from .models.inventory import PRODUCT_UNITS

    for field in ("cost_price_cents", "selling_price_cents", "wholesale_price_cents"):
        if field in patch:
            _check_cents(field, patch[field])

    for field in ("stock_quantity", "min_stock", "max_stock"):
        if field in patch and patch[field] is not None and patch[field] < 0:
            raise ValidationError(f"{field} must be >= 0")

    if "unit" in patch:
        require_choice("unit", patch["unit"], PRODUCT_UNITS)

    if "sku" in patch and patch["sku"]:
        patch["sku"] = patch["sku"].upper()


def enforce_rules_customer(patch: dict) -> None:
    from .models.customers import CUSTOMER_TYPES, CUSTOMER_STATUSES

    if "email" in patch and not patch["email"]:
        patch["email"] = None
    if patch.get("email"):
        patch["email"] = patch["email"].lower()
        if not EMAIL_RE.match(patch["email"]):
            raise ValidationError("Please provide a valid email")
    if "phone" in patch and not PHONE_RE.match(patch["phone"] or ""):
        raise ValidationError("Please provide a valid phone number")
    if "customer_type" in patch:
        require_choice("customer_type", patch["customer_type"], CUSTOMER_TYPES)
    if "status" in patch:
        require_choice("status", patch["status"], CUSTOMER_STATUSES)


def enforce_rules_owner(patch: dict) -> None:
    from .models.invoices import CURRENCIES

    if "currency" in patch:
        patch["currency"] = (patch["currency"] or "").upper()
        require_choice("currency", patch["currency"], CURRENCIES)
    if "tax_rate_bps" in patch:
        rate = patch["tax_rate_bps"]
        if rate < 0 or rate > MAX_BPS:
            raise ValidationError(f"tax_rate_bps must be between 0 and {MAX_BPS}")


# =============================================================================
# LINE ITEMS
# =============================================================================

def _parse_line_common(index: int, raw: Any, allowed: set[str]) -> dict:
    if not isinstance(raw, dict):
        raise ValidationError(f"lines[{index}] must be an object")

    unknown = sorted(set(raw.keys()) - allowed)
    if unknown:
        raise ValidationError(f"lines[{index}]: field not allowed: {', '.join(unknown)}")

    if raw.get("product_id") is None:
        raise ValidationError(f"lines[{index}].product_id is required")
    if raw.get("quantity") is None:
        raise ValidationError(f"lines[{index}].quantity is required")

    line = {
        "product_id": coerce_int(f"lines[{index}].product_id", raw["product_id"]),
        "quantity": coerce_int(f"lines[{index}].quantity", raw["quantity"]),
        "unit_price_cents": None,
    }
    if line["quantity"] < 1:
        raise ValidationError(f"lines[{index}].quantity must be at least 1")

    if raw.get("unit_price_cents") is not None:
        price = coerce_int(f"lines[{index}].unit_price_cents", raw["unit_price_cents"])
        _check_cents(f"lines[{index}].unit_price_cents", price)
        line["unit_price_cents"] = price
    return line


def validate_invoice_lines(raw_lines: Any) -> list[dict]:
    """
    Parse invoice line payloads.

    Each line: product_id, quantity (>= 1), optional unit_price_cents (>= 0),
    discount_bps (0..10000), tax_cents (>= 0), description.
    Client-supplied line totals are not accepted.
    """
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("lines must be a non-empty list")

    allowed = {"product_id", "quantity", "unit_price_cents", "discount_bps", "tax_cents", "description"}
    parsed = []
    for i, raw in enumerate(raw_lines):
        line = _parse_line_common(i, raw, allowed)

        discount_bps = coerce_int(f"lines[{i}].discount_bps", raw.get("discount_bps") or 0)
        if discount_bps < 0:
            raise ValidationError(f"lines[{i}].discount_bps cannot be negative")
        if discount_bps > MAX_BPS:
            raise ValidationError(f"lines[{i}].discount_bps cannot exceed 100%")

        tax_cents = coerce_int(f"lines[{i}].tax_cents", raw.get("tax_cents") or 0)
        _check_cents(f"lines[{i}].tax_cents", tax_cents)

        description = raw.get("description")
        if description is not None:
            description = str(description).strip()[:255]

        line.update(discount_bps=discount_bps, tax_cents=tax_cents, description=description)
        parsed.append(line)
    return parsed


def validate_sale_lines(raw_lines: Any) -> list[dict]:
    """
    Parse sale line payloads.

    Each line: product_id, quantity (>= 1), optional unit_price_cents (>= 0)
    and discount_cents (>= 0, an amount). Sale lines carry no tax.
    """
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("lines must be a non-empty list")

    allowed = {"product_id", "quantity", "unit_price_cents", "discount_cents"}
    parsed = []
    for i, raw in enumerate(raw_lines):
        line = _parse_line_common(i, raw, allowed)

        discount_cents = coerce_int(f"lines[{i}].discount_cents", raw.get("discount_cents") or 0)
        _check_cents(f"lines[{i}].discount_cents", discount_cents)

        line["discount_cents"] = discount_cents
        parsed.append(line)
    return parsed
