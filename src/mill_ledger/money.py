"""Currency parsing, rounding and formatting helpers.

Every monetary or quantity value entering the package passes through
:func:`parse_decimal` (strict) or :func:`coerce_or_zero` (lenient) so that the
domain model only ever holds finite :class:`~decimal.Decimal` instances.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from . import log
from .constants import CURRENCY_SYMBOL
from .exceptions import ValidationError


CENT = Decimal("0.01")
ZERO = Decimal("0")

def is_blank(value: Any) -> bool:
    """Return ``True`` for values that mean "not entered yet"."""

    return value is None or (isinstance(value, str) and not value.strip())


def parse_decimal(value: Any, field: str = "value") -> Optional[Decimal]:
    """Convert raw input into a finite ``Decimal``.

    Args:
        value (Any): Raw value from a form, CLI argument or JSON payload.
            Strings, integers, floats and decimals are accepted.
        field (str): Field name used to key the validation error.

    Returns:
        Decimal | None: Parsed value, or ``None`` when ``value`` is blank.

    Raises:
        ValidationError: If ``value`` is present but not a finite number.
    """

    if is_blank(value):
        return None
    if isinstance(value, bool):
        raise ValidationError.for_field(field, f"{field} must be a number")

    try:
        if isinstance(value, Decimal):
            parsed = value
        elif isinstance(value, (int, float)):
            parsed = Decimal(str(value))
        else:
            parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError) as exc:
        log.debug("Rejected non-numeric %s input: %r", field, value)
        raise ValidationError.for_field(field, f"{field} must be a number") from exc

    if not parsed.is_finite():
        log.debug("Rejected non-finite %s input: %r", field, value)
        raise ValidationError.for_field(field, f"{field} must be a finite number")
    return parsed


def require_positive(value: Any, field: str) -> Decimal:
    """Parse ``value`` and require it to be present and strictly positive."""

    parsed = parse_decimal(value, field)
    if parsed is None:
        raise ValidationError.for_field(field, f"{field} is required")
    if parsed <= ZERO:
        raise ValidationError.for_field(field, f"{field} must be greater than 0")
    return parsed


def parse_nonnegative(value: Any, field: str) -> Decimal:
    """Parse ``value`` treating blanks as zero and rejecting negatives."""

    parsed = parse_decimal(value, field)
    if parsed is None:
        return ZERO
    if parsed < ZERO:
        raise ValidationError.for_field(field, f"{field} cannot be negative")
    return parsed


def coerce_or_zero(value: Any) -> Decimal:
    """Leniently convert ``value`` to ``Decimal``, mapping anything unusable to zero.

    Salary figures are summed this way: a blank or malformed field counts as
    ``0`` instead of blocking the live net-salary preview.
    """

    try:
        parsed = parse_decimal(value)
    except ValidationError:
        return ZERO
    return ZERO if parsed is None else parsed


def round_money(amount: Decimal) -> Decimal:
    """Round to whole cents using half-up rounding."""

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_wire(amount: Optional[Decimal]) -> Optional[float]:
    """Serialise a money value as the JSON number the backend expects."""

    if amount is None:
        return None
    return float(round_money(amount))


def format_currency(value: Any, *, show_decimals: bool = True) -> str:
    """Format an amount as ``Rs. 1,234.56``.

    Unparseable input renders as zero, matching how statements display
    missing balances.
    """

    amount = coerce_or_zero(value)
    if show_decimals:
        return f"{CURRENCY_SYMBOL} {round_money(amount):,.2f}"
    whole = amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return f"{CURRENCY_SYMBOL} {whole:,.0f}"


__all__ = [
    "CENT",
    "ZERO",
    "is_blank",
    "parse_decimal",
    "require_positive",
    "parse_nonnegative",
    "coerce_or_zero",
    "round_money",
    "to_wire",
    "format_currency",
]
