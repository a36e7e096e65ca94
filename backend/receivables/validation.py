from __future__ import annotations
from datetime import date, datetime
from receivables.time_utils import parse_iso_date, parse_iso_datetime

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Maximum single payment: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999


# =============================================================================
# ERROR TAXONOMY
# =============================================================================

class ReceivablesError(Exception):
    """Base class for engine errors; status_code maps to the HTTP response."""
    status_code = 500


class ValidationError(ReceivablesError, ValueError):
    """400-level input problem. Raised before any write."""
    status_code = 400


class NotFoundError(ReceivablesError, LookupError):
    """404-level: customer, invoice, receipt, money box not found."""
    status_code = 404


class ConflictError(ReceivablesError, ValueError):
    """409-level business rule conflict (e.g., receipt number collision)."""
    status_code = 409


class LedgerPostingError(ReceivablesError):
    """
    Cash-side posting could not be placed (no open register, unknown money box).

    Raised after the settlement itself committed; callers must treat the
    payment as recorded and flag the float placement for reconciliation.
    """
    status_code = 500


class CacheInvalidationError(ReceivablesError):
    """Logged only. Never surfaced to settlement callers."""
    status_code = 500


# =============================================================================
# SCALAR COERCION
# =============================================================================

def coerce_int(value: Any, field: str) -> int:
    """
    Strict integer parsing: rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, int) and not isinstance(value, bool):
        return value
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
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_amount_cents(value: Any, field: str = "amount_cents") -> int:
    """Positive amount in cents, capped at MAX_AMOUNT_CENTS."""
    if value is None:
        raise ValidationError(f"{field} is required")
    amount = coerce_int(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    if amount > MAX_AMOUNT_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_AMOUNT_CENTS} ({MAX_AMOUNT_CENTS / 100:,.2f})")
    return amount


def coerce_optional_id(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    parsed = coerce_int(value, field)
    if parsed <= 0:
        raise ValidationError(f"{field} must be a positive id")
    return parsed


def coerce_optional_date(value: Any, field: str) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 date")
    raise ValidationError(f"{field} must be a date")


def coerce_optional_str(value: Any, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(f"{field} must be a string")
    s = str(value).strip()
    if not s:
        return None
    if max_length and len(s) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return s


# =============================================================================
# MODEL-DRIVEN PATCH VALIDATION
# =============================================================================

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


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        d = coerce_optional_date(value, col.key)
        if d is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 date")
        return d

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
        missing = [f for f in required if f not in payload]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(sorted(missing))}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch
