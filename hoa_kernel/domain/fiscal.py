"""
Fiscal calendar helpers.

A fiscal year is named after the calendar year in which it ends.  With the
default July start, fiscal year 2026 runs July 2025 - June 2026 and fiscal
month 0 is July.  Billing periods are keyed ``"{fiscal_year}-{month:02d}"``.
"""

from dataclasses import dataclass
from datetime import date

from hoa_kernel.exceptions import InvalidInputError

_MONTH_ABBR = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)


@dataclass(frozen=True)
class FiscalCalendar:
    """Fiscal year arithmetic for a given start month (1-12)."""

    start_month: int = 7

    def __post_init__(self):
        if not 1 <= self.start_month <= 12:
            raise ValueError(f"start_month must be 1-12, got {self.start_month}")

    def fiscal_year_for(self, day: date) -> int:
        if self.start_month == 1 or day.month < self.start_month:
            return day.year
        return day.year + 1

    def fiscal_month_for(self, day: date) -> int:
        """0-based fiscal month index of a calendar date."""
        return (day.month - self.start_month) % 12

    def calendar_month(self, fiscal_month: int) -> int:
        """Calendar month (1-12) of a 0-based fiscal month."""
        _check_month(fiscal_month)
        return (self.start_month - 1 + fiscal_month) % 12 + 1

    def calendar_year(self, fiscal_year: int, fiscal_month: int) -> int:
        if self.start_month == 1:
            return fiscal_year
        if self.calendar_month(fiscal_month) >= self.start_month:
            return fiscal_year - 1
        return fiscal_year

    def period_start(self, fiscal_year: int, fiscal_month: int) -> date:
        return date(
            self.calendar_year(fiscal_year, fiscal_month),
            self.calendar_month(fiscal_month),
            1,
        )

    def period_key_for(self, day: date) -> str:
        return period_key(self.fiscal_year_for(day), self.fiscal_month_for(day))

    def readable_period(self, key: str) -> str:
        """``"2026-00"`` -> ``"Jul 2025"`` for a July start."""
        fiscal_year, fiscal_month = parse_period_key(key)
        month = self.calendar_month(fiscal_month)
        return f"{_MONTH_ABBR[month - 1]} {self.calendar_year(fiscal_year, fiscal_month)}"


def _check_month(fiscal_month: int) -> None:
    if not 0 <= fiscal_month <= 11:
        raise InvalidInputError(
            f"Fiscal month must be 0-11, got {fiscal_month}",
            value=fiscal_month,
            field="fiscal_month",
        )


def period_key(fiscal_year: int, fiscal_month: int) -> str:
    _check_month(fiscal_month)
    return f"{fiscal_year}-{fiscal_month:02d}"


def parse_period_key(key: str) -> tuple[int, int]:
    """Split a period key into (fiscal_year, fiscal_month).

    Raises:
        InvalidInputError: If the key is not ``YYYY-MM`` with MM in 0-11.
    """
    parts = key.split("-") if isinstance(key, str) else []
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise InvalidInputError(f"Malformed period key: {key!r}", value=key, field="period_key")
    fiscal_year, fiscal_month = int(parts[0]), int(parts[1])
    _check_month(fiscal_month)
    return fiscal_year, fiscal_month
