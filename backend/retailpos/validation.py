from __future__ import annotations

from typing import Any


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical amounts
MAX_AMOUNT_CENTS = 999_999_999

# Maximum quantity on a single cart line
MAX_LINE_QUANTITY = 99_999


class RetailPosError(Exception):
    """
    Base class for errors surfaced by the settlement and stock-ledger core.

    field:   the input field the problem relates to (for field-level messages)
    details: structured context for the caller (offending product, quantities)
    """
    http_status = 500

    def __init__(self, message: str, *, field: str | None = None, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.field = field
        self.details = details or {}

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"error": self.message}
        if self.field:
            payload["field"] = self.field
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(RetailPosError, ValueError):
    """400-level input problem (including insufficient stock)."""
    http_status = 400


class NotFoundError(RetailPosError, LookupError):
    """404-level: referenced product/location/customer does not exist."""
    http_status = 404


class InvalidStateError(RetailPosError):
    """409-level: state changed underneath a validated operation (e.g. points race)."""
    http_status = 409


class StorageFailure(RetailPosError):
    """
    503-level: the data store rejected or could not complete the atomic unit.

    retryable=True means the caller may re-attempt the whole operation
    (lock timeouts, deadlocks). Nothing was committed either way.
    """
    http_status = 503

    def __init__(self, message: str, *, retryable: bool = False, **kwargs):
        super().__init__(message, **kwargs)
        self.retryable = retryable

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["retryable"] = self.retryable
        return payload


def require_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion for service inputs.

    Rejects bools, floats, scientific notation and decimal strings instead of
    truncating them.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", field=field)

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer", field=field)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field=field)
        # Reject decimal points (e.g., "12.5")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field=field)
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field=field)
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    else:
        raise ValidationError(f"{field} must be an integer", field=field)

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be at least {minimum}", field=field)
    return result


def optional_int(value: Any, field: str, *, minimum: int | None = None) -> int | None:
    """Like require_int, but None / blank strings mean 'not provided'."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return require_int(value, field, minimum=minimum)


def clean_text(value: Any, field: str, *, max_length: int | None = None) -> str | None:
    """Strip free text; blank becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", field=field)
    return text
