"""
Canonical bill and payment-entry shapes.

These are the only bill shapes the engines ever see.  Storage variants
(dict-keyed month slots, fixed 12-slot arrays, open-ended payment lists)
are normalized by the repositories before a ``Bill`` is built.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from hoa_kernel.logging_config import get_logger

logger = get_logger("domain.billing")


class BillStatus(str, Enum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class BillingModule(str, Enum):
    """Billing modules sharing the distribution core."""

    WATER = "water"
    HOA = "hoa"


def derive_status(paid_amount: int, total_amount: int) -> BillStatus:
    """Status is a pure function of paid vs total."""
    if paid_amount >= total_amount:
        return BillStatus.PAID
    if paid_amount <= 0:
        return BillStatus.UNPAID
    return BillStatus.PARTIAL


@dataclass(frozen=True)
class PaymentEntry:
    """One payment applied to one bill (minor units)."""

    amount: int
    base_charge_paid: int
    penalty_paid: int
    date: date
    transaction_id: str
    recorded_at: datetime
    method: str | None = None
    reference: str | None = None

    def __post_init__(self):
        if self.base_charge_paid < 0 or self.penalty_paid < 0:
            raise ValueError("Payment entry portions cannot be negative")
        if self.amount != self.base_charge_paid + self.penalty_paid:
            logger.warning(
                "payment_entry_split_mismatch",
                extra={
                    "transaction_id": self.transaction_id,
                    "amount": self.amount,
                    "base_charge_paid": self.base_charge_paid,
                    "penalty_paid": self.penalty_paid,
                },
            )
            raise ValueError(
                f"Payment entry amount {self.amount} != base "
                f"{self.base_charge_paid} + penalty {self.penalty_paid}"
            )


@dataclass(frozen=True)
class Bill:
    """
    A unit's bill for one billing period.

    ``bill_id`` is the period key (``"2026-03"``); together with
    ``unit_id`` and ``billing_module`` it identifies the bill.
    """

    bill_id: str
    unit_id: str
    base_charge: int
    penalty_amount: int
    due_date: date
    base_paid: int = 0
    penalty_paid: int = 0
    payments: tuple[PaymentEntry, ...] = field(default_factory=tuple)
    billing_module: BillingModule = BillingModule.WATER
    last_penalty_update: date | None = None

    def __post_init__(self):
        if self.base_charge < 0 or self.penalty_amount < 0:
            raise ValueError(f"Bill {self.bill_id}: charges cannot be negative")
        if self.base_paid < 0 or self.penalty_paid < 0:
            raise ValueError(f"Bill {self.bill_id}: paid amounts cannot be negative")
        if self.paid_amount > self.total_amount:
            logger.warning(
                "bill_overpaid",
                extra={
                    "bill_id": self.bill_id,
                    "unit_id": self.unit_id,
                    "paid_amount": self.paid_amount,
                    "total_amount": self.total_amount,
                },
            )
            raise ValueError(
                f"Bill {self.bill_id}: paid {self.paid_amount} exceeds total {self.total_amount}"
            )

    @property
    def period_key(self) -> str:
        return self.bill_id

    @property
    def total_amount(self) -> int:
        return self.base_charge + self.penalty_amount

    @property
    def paid_amount(self) -> int:
        return self.base_paid + self.penalty_paid

    @property
    def status(self) -> BillStatus:
        return derive_status(self.paid_amount, self.total_amount)

    @property
    def unpaid_total(self) -> int:
        return self.total_amount - self.paid_amount

    @property
    def unpaid_base(self) -> int:
        return self.base_charge - self.base_paid

    @property
    def unpaid_penalty(self) -> int:
        return self.penalty_amount - self.penalty_paid

    def payments_for(self, transaction_id: str) -> tuple[PaymentEntry, ...]:
        return tuple(p for p in self.payments if p.transaction_id == transaction_id)
