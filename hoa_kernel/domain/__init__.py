"""
Pure domain layer.

Immutable shapes and deterministic helpers with NO dependencies on
SQLAlchemy, the database, or the wall clock (except SystemClock).
"""

from hoa_kernel.domain.billing import (
    Bill,
    BillingModule,
    BillStatus,
    PaymentEntry,
    derive_status,
)
from hoa_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from hoa_kernel.domain.credit import CreditBalance, CreditEntry, CreditEntryType
from hoa_kernel.domain.currency import (
    INTEGRITY_TOLERANCE_MINOR_UNITS,
    MINOR_UNITS_PER_MAJOR,
    format_major,
    round_half_up,
    to_major_units,
    to_minor_units,
)
from hoa_kernel.domain.dtos import TransactionData, TransactionRecord
from hoa_kernel.domain.fiscal import FiscalCalendar, parse_period_key, period_key

__all__ = [
    "Bill",
    "BillingModule",
    "BillStatus",
    "PaymentEntry",
    "derive_status",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "CreditBalance",
    "CreditEntry",
    "CreditEntryType",
    "INTEGRITY_TOLERANCE_MINOR_UNITS",
    "MINOR_UNITS_PER_MAJOR",
    "format_major",
    "round_half_up",
    "to_major_units",
    "to_minor_units",
    "TransactionData",
    "TransactionRecord",
    "FiscalCalendar",
    "parse_period_key",
    "period_key",
]
