from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable


# Maximum price: 9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

MAX_PAGE_SIZE = 500


class LedgerError(Exception):
    """Base class for inventory ledger errors."""

    retryable = False

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(LedgerError, ValueError):
    """Malformed or missing input, rejected before any write."""


class NotFoundError(LedgerError, LookupError):
    """Referenced product/location/user/shift does not exist."""


class NoOpenShift(NotFoundError):
    """No open shift exists at the location."""


class InsufficientStock(LedgerError):
    """Outbound quantity exceeds the available balance."""


class InsufficientCostBasis(LedgerError):
    """FIFO allocation could not fully cost a sale item."""


class ConflictError(LedgerError):
    """Business rule conflict (duplicate names, codes)."""


class DuplicateReference(ConflictError):
    """Duplicate transfer code or unique name."""


class ConcurrencyConflict(LedgerError):
    """Lock or serialization failure; the operation may be retried."""

    retryable = True


@dataclass(frozen=True)
class LineInput:
    """One validated sale or purchase line."""
    product_id: int
    quantity: int
    unit_price_cents: int | None

    @property
    def line_total_cents(self) -> int | None:
        if self.unit_price_cents is None:
            return None
        return self.quantity * self.unit_price_cents


def coerce_int(value: Any, field: str, *, minimum: int | None = None, allow_none: bool = False) -> int | None:
    """
    Strict integer coercion.

    Rejects bools, floats, decimal strings and scientific notation.
    """
    if value is None:
        if allow_none:
            return None
        raise ValidationError(f"{field} is required")

    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", details={field: result})
    return result


def coerce_cents(value: Any, field: str, *, allow_none: bool = False) -> int | None:
    cents = coerce_int(value, field, minimum=0, allow_none=allow_none)
    if cents is not None and cents > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS}")
    return cents


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    text = value.strip()
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters")
    return text


def parse_line_items(items: Iterable[Any] | None, *, price_field: str = "unit_price_cents",
                     price_required: bool = True) -> list[LineInput]:
    """
    Validate sale/purchase lines given as dicts or LineInput objects.

    Each line needs product_id and a positive quantity; the unit price must be
    a non-negative integer (in cents) and may be omitted only when
    price_required is False.
    """
    if items is None:
        raise ValidationError("items are required")
    items = list(items)
    if not items:
        raise ValidationError("items cannot be empty")

    lines: list[LineInput] = []
    for index, raw in enumerate(items):
        if isinstance(raw, LineInput):
            raw = {"product_id": raw.product_id, "quantity": raw.quantity, price_field: raw.unit_price_cents}
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")

        product_id = coerce_int(raw.get("product_id"), f"items[{index}].product_id", minimum=1)
        quantity = coerce_int(raw.get("quantity"), f"items[{index}].quantity", minimum=1)
        unit_price = coerce_cents(
            raw.get(price_field),
            f"items[{index}].{price_field}",
            allow_none=not price_required,
        )
        lines.append(LineInput(product_id=product_id, quantity=quantity, unit_price_cents=unit_price))
    return lines


def check_total(total_cents: Any, lines: list[LineInput]) -> int:
    """The declared total must match the sum of the line totals."""
    total = coerce_cents(total_cents, "total_cents")
    expected = sum(line.line_total_cents or 0 for line in lines)
    if total != expected:
        raise ValidationError(
            "total_cents does not match the sum of the items",
            details={"total_cents": total, "expected_cents": expected},
        )
    return total


def coerce_page(limit: Any, offset: Any) -> tuple[int, int]:
    """History listings: limit in 1..MAX_PAGE_SIZE, offset >= 0."""
    limit = coerce_int(limit, "limit", minimum=1)
    if limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit cannot exceed {MAX_PAGE_SIZE}")
    return limit, coerce_int(offset, "offset", minimum=0)


def search_pattern(search: Any) -> str | None:
    """Case-insensitive substring pattern for ILIKE, or None for no search."""
    if search is None:
        return None
    if not isinstance(search, str):
        raise ValidationError("search must be a string")
    term = search.strip()
    if not term:
        return None
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"
