# Overview: Boundary checks run once on incoming JSON / query params before
# anything reaches the services. The services accept already-typed values.

from __future__ import annotations

from typing import Any

from .errors import ValidationError

MAX_QUANTITY = 100_000
MAX_IDENTIFIER_LENGTH = 64


def field(payload: dict, *names: str, default: Any = None) -> Any:
    """First present key among names (snake_case and the external camelCase)."""
    for name in names:
        if name in payload:
            return payload[name]
    return default


def require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def coerce_int(name: str, value: Any) -> int:
    """Strict integer parsing: rejects floats, bools, decimals and scientific notation."""
    if value is None:
        raise ValidationError(f"{name} is required")
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{name} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{name} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{name} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{name} must be an integer, not a decimal")
    raise ValidationError(f"{name} must be an integer")


def coerce_quantity(value: Any, *, name: str = "quantity", allow_negative: bool = False) -> int:
    qty = coerce_int(name, value)
    if allow_negative:
        if qty == 0:
            raise ValidationError(f"{name} must be non-zero")
    elif qty <= 0:
        raise ValidationError(f"{name} must be > 0")
    if abs(qty) > MAX_QUANTITY:
        raise ValidationError(f"{name} cannot exceed {MAX_QUANTITY}")
    return qty


def require_identifier(name: str, value: Any) -> str:
    """Opaque identifiers (sku, cashier, store) are non-blank strings."""
    if value is None:
        raise ValidationError(f"{name} is required")
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError(f"{name} must be a string")
    text = str(value).strip()
    if not text:
        raise ValidationError(f"{name} cannot be blank")
    if len(text) > MAX_IDENTIFIER_LENGTH:
        raise ValidationError(f"{name} exceeds max length {MAX_IDENTIFIER_LENGTH}")
    return text


def parse_line_items(raw: Any) -> list[tuple[str, int]]:
    """[{sku, quantity?}, ...] -> [(sku, quantity)], quantity defaults to 1 (one scan)."""
    if not isinstance(raw, list) or not raw:
        raise ValidationError("lines must be a non-empty list")
    items = []
    for i, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValidationError(f"lines[{i}] must be an object")
        sku = require_identifier(f"lines[{i}].sku", entry.get("sku"))
        quantity = coerce_quantity(entry.get("quantity", 1), name=f"lines[{i}].quantity")
        items.append((sku, quantity))
    return items
