"""Credit balance ledger shapes."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class CreditEntryType(str, Enum):
    CREDIT_ADDED = "credit_added"
    CREDIT_USED = "credit_used"
    CREDIT_REPAIR = "credit_repair"
    CREDIT_RESTORED = "credit_restored"
    CREDIT_REMOVED = "credit_removed"

    @property
    def sign(self) -> int:
        """+1 if the entry raised the balance, -1 if it lowered it."""
        if self in (CreditEntryType.CREDIT_USED, CreditEntryType.CREDIT_REMOVED):
            return -1
        return 1


@dataclass(frozen=True)
class CreditEntry:
    """
    One change to a unit's credit balance.

    ``amount`` is always positive; the direction comes from ``entry_type``.
    """

    id: str
    timestamp: datetime
    transaction_id: str | None
    entry_type: CreditEntryType
    amount: int
    balance_before: int
    balance_after: int
    description: str = ""

    def __post_init__(self):
        if self.amount < 0:
            raise ValueError(f"Credit entry amount must be positive, got {self.amount}")
        if self.balance_before + self.entry_type.sign * self.amount != self.balance_after:
            raise ValueError(
                f"Credit entry {self.id}: {self.balance_before} "
                f"{'+' if self.entry_type.sign > 0 else '-'} {self.amount} "
                f"!= {self.balance_after}"
            )

    @property
    def signed_amount(self) -> int:
        return self.entry_type.sign * self.amount


@dataclass(frozen=True)
class CreditBalance:
    """Projection of a unit's credit ledger for one fiscal year."""

    unit_id: str
    fiscal_year: int
    current_balance: int
    history: tuple[CreditEntry, ...] = field(default_factory=tuple)

    @property
    def last_entry(self) -> CreditEntry | None:
        return self.history[-1] if self.history else None
