"""
Currency -- lossless major/minor unit conversion.

All ledger arithmetic is integer minor units (centavos).  Amounts arrive
in major units at the API edge and are converted here, once.  Floats are
accepted only at that edge and are routed through ``str()`` so that
``0.1`` becomes exactly ten centavos.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from hoa_kernel.exceptions import InvalidInputError

MINOR_UNITS_PER_MAJOR = 100
MAJOR_DECIMAL_PLACES = 2

# Allocation-vs-transaction reconciliation tolerance: one major unit.
INTEGRITY_TOLERANCE_MINOR_UNITS = 100

_MAJOR_QUANTUM = Decimal("0.01")


def _as_decimal(value: int | Decimal | str | float, field: str) -> Decimal:
    if isinstance(value, bool):
        raise InvalidInputError(f"{field} must be numeric, got bool", value=value, field=field)
    try:
        result = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"{field} is not a number: {value!r}", value=value, field=field)
    if not result.is_finite():
        raise InvalidInputError(f"{field} must be finite, got {value!r}", value=value, field=field)
    return result


def round_half_up(value: Decimal) -> int:
    """Round a Decimal to the nearest integer, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def to_minor_units(major: int | Decimal | str | float, field: str = "amount") -> int:
    """Convert a major-unit amount (e.g. pesos) to integer minor units.

    Raises:
        InvalidInputError: If the value is not a finite number.
    """
    amount = _as_decimal(major, field).quantize(_MAJOR_QUANTUM, rounding=ROUND_HALF_UP)
    return int(amount * MINOR_UNITS_PER_MAJOR)


def to_major_units(minor: int) -> Decimal:
    """Convert integer minor units to an exact two-place Decimal."""
    return (Decimal(minor) / MINOR_UNITS_PER_MAJOR).quantize(_MAJOR_QUANTUM)


def format_major(minor: int, symbol: str = "$") -> str:
    """Display text for a minor-unit amount, e.g. ``-$1,234.50``."""
    sign = "-" if minor < 0 else ""
    return f"{sign}{symbol}{to_major_units(abs(minor)):,.2f}"
