"""
hoa_engines.compensation -- Transaction deletion planning.

Responsibility:
    Compute, without touching storage, everything a transaction deletion
    must undo: the credit ledger reversal, each bill's reversed payment
    entries, and the dues month slots that reference the transaction.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    The stateful two-phase orchestration (credit reversal, atomic cleanup,
    rollback) lives in hoa_services/compensation_service.py.

Invariants enforced:
    - Credit reversal inverts each removed entry's effect and clamps the
      resulting balance at 0.
    - A reversed bill never goes below 0 paid; its status is re-derived.
    - A dues slot loses only the deleted transaction's contribution.
      Slots without a contribution list are cleared only when their
      ``reference`` equals the transaction id.  Unrelated slots survive.

Failure modes:
    - None raised here.  Missing or malformed dues slots are normalized to
      empty.

Audit relevance:
    ``audit_action`` names the audit log row written for each deletion.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

from hoa_kernel.domain.billing import Bill, BillStatus, PaymentEntry, derive_status
from hoa_kernel.domain.credit import CreditEntry
from hoa_kernel.logging_config import get_logger

logger = get_logger("engines.compensation")

MONTHS_PER_FISCAL_YEAR = 12


# =============================================================================
# Credit reversal (phase A)
# =============================================================================


@dataclass(frozen=True)
class CreditReversal:
    """
    Plan for removing a transaction's credit entries.

    ``net_reversal`` is the signed change applied to the balance before
    clamping; ``new_balance`` is what will be stored.
    """

    previous_balance: int
    new_balance: int
    net_reversal: int
    removed_entry_ids: tuple[str, ...] = ()

    @property
    def clamped(self) -> bool:
        return self.previous_balance + self.net_reversal != self.new_balance

    @property
    def has_effect(self) -> bool:
        return bool(self.removed_entry_ids)


def plan_credit_reversal(
    current_balance: int,
    entries: Sequence[CreditEntry],
) -> CreditReversal:
    """Invert the effect of ``entries`` on ``current_balance``.

    Entries that raised the balance (added, repair, restored) are
    subtracted; entries that lowered it (used, removed) are added back.
    """
    net = -sum(e.signed_amount for e in entries)
    new_balance = max(0, current_balance + net)
    if current_balance + net < 0:
        logger.warning(
            "credit_reversal_clamped",
            extra={
                "previous_balance": current_balance,
                "net_reversal": net,
                "entry_count": len(entries),
            },
        )
    return CreditReversal(
        previous_balance=current_balance,
        new_balance=new_balance,
        net_reversal=net,
        removed_entry_ids=tuple(e.id for e in entries),
    )


# =============================================================================
# Bill reversal (phase B)
# =============================================================================


@dataclass(frozen=True)
class BillReversal:
    """Effect of removing one transaction's payment entries from a bill."""

    bill_id: str
    unit_id: str
    removed_entries: tuple[PaymentEntry, ...]
    base_reversed: int
    penalty_reversed: int
    previous_status: BillStatus
    new_status: BillStatus
    bill: Bill

    @property
    def amount_reversed(self) -> int:
        return self.base_reversed + self.penalty_reversed


def plan_bill_reversal(bill: Bill, transaction_id: str) -> BillReversal:
    """Remove ``transaction_id``'s payment entries from ``bill``."""
    matched = bill.payments_for(transaction_id)
    base_reversed = sum(p.base_charge_paid for p in matched)
    penalty_reversed = sum(p.penalty_paid for p in matched)

    reversed_bill = replace(
        bill,
        base_paid=max(0, bill.base_paid - base_reversed),
        penalty_paid=max(0, bill.penalty_paid - penalty_reversed),
        payments=tuple(p for p in bill.payments if p.transaction_id != transaction_id),
    )

    return BillReversal(
        bill_id=bill.bill_id,
        unit_id=bill.unit_id,
        removed_entries=matched,
        base_reversed=base_reversed,
        penalty_reversed=penalty_reversed,
        previous_status=bill.status,
        new_status=derive_status(reversed_bill.paid_amount, reversed_bill.total_amount),
        bill=reversed_bill,
    )


# =============================================================================
# Dues cleanup (phase B)
# =============================================================================


def normalize_month_slots(payments: Any) -> list[dict[str, Any] | None]:
    """Coerce stored dues payments into exactly 12 slots.

    Accepts a list of any length or a dict keyed by month index (int or
    numeric string).  Anything that is not a dict becomes an empty slot.
    """
    slots: list[dict[str, Any] | None] = [None] * MONTHS_PER_FISCAL_YEAR
    if isinstance(payments, Mapping):
        items = []
        for key, value in payments.items():
            try:
                items.append((int(key), value))
            except (TypeError, ValueError):
                logger.warning("dues_slot_key_ignored", extra={"slot_key": str(key)})
    elif isinstance(payments, (list, tuple)):
        items = list(enumerate(payments))
    else:
        items = []

    for index, value in items:
        if 0 <= index < MONTHS_PER_FISCAL_YEAR and isinstance(value, Mapping):
            slots[index] = dict(value)
    return slots


def slots_total(slots: Sequence[Mapping[str, Any] | None]) -> int:
    return sum(int(s.get("amount", 0) or 0) for s in slots if s)


@dataclass(frozen=True)
class DuesCleanup:
    slots: tuple[dict[str, Any] | None, ...]
    cleared_months: tuple[int, ...]
    total_paid: int
    amount_cleared: int = 0
    reduced_months: tuple[int, ...] = ()

    @property
    def has_effect(self) -> bool:
        return bool(self.cleared_months or self.reduced_months)


def slot_contributions(slot: Mapping[str, Any]) -> list[dict[str, Any]] | None:
    """Per-transaction parts of a slot, or None for slots written without them."""
    contributions = slot.get("contributions")
    if not isinstance(contributions, list):
        return None
    return [dict(c) for c in contributions if isinstance(c, Mapping)]


def plan_dues_cleanup(payments: Any, transaction_id: str) -> DuesCleanup:
    """Remove ``transaction_id``'s share of every dues month slot.

    Slots that record their contributing transactions lose only that
    transaction's amount and are cleared once nothing remains.  Older slots
    are cleared whole when their ``reference`` is the transaction.
    """
    slots = normalize_month_slots(payments)
    cleared: list[int] = []
    reduced: list[int] = []
    amount_cleared = 0
    for index, slot in enumerate(slots):
        if not slot:
            continue
        contributions = slot_contributions(slot)
        if contributions is None:
            if slot.get("reference") == transaction_id:
                amount_cleared += int(slot.get("amount", 0) or 0)
                slots[index] = None
                cleared.append(index)
            continue

        kept = [c for c in contributions if c.get("transaction_id") != transaction_id]
        if len(kept) == len(contributions):
            continue
        amount_cleared += sum(
            int(c.get("amount", 0) or 0)
            for c in contributions
            if c.get("transaction_id") == transaction_id
        )
        if not kept:
            slots[index] = None
            cleared.append(index)
            continue
        amount = sum(int(c.get("amount", 0) or 0) for c in kept)
        slots[index] = {
            **slot,
            "paid": amount > 0,
            "amount": amount,
            "date": kept[-1].get("date"),
            "reference": kept[-1].get("transaction_id"),
            "contributions": kept,
        }
        reduced.append(index)
    return DuesCleanup(
        slots=tuple(slots),
        cleared_months=tuple(cleared),
        total_paid=slots_total(slots),
        amount_cleared=amount_cleared,
        reduced_months=tuple(reduced),
    )


# =============================================================================
# Audit
# =============================================================================


@dataclass(frozen=True)
class DeletionPlan:
    """Everything phase B will write for one transaction."""

    transaction_id: str
    bill_reversals: tuple[BillReversal, ...] = field(default_factory=tuple)
    dues_cleanup: DuesCleanup | None = None

    @property
    def affected_periods(self) -> tuple[str, ...]:
        return tuple(sorted({r.bill_id for r in self.bill_reversals}))

    @property
    def action(self) -> str:
        return audit_action(
            has_dues=self.dues_cleanup is not None and self.dues_cleanup.has_effect,
            has_bills=bool(self.bill_reversals),
        )


def audit_action(has_dues: bool, has_bills: bool) -> str:
    if has_dues and has_bills:
        return "delete_with_multi_cleanup"
    if has_dues:
        return "delete_with_hoa_cleanup"
    if has_bills:
        return "delete_with_water_cleanup"
    return "delete"
