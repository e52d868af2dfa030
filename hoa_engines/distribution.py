"""
hoa_engines.distribution -- Payment distribution engine.

Responsibility:
    Given a payment, a unit's prepaid credit balance and its outstanding
    bills (oldest first), decide how much of the money retires which bill
    (base charge vs penalty) and what the resulting credit balance is.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The same Distribution
    drives both a non-committing preview and a committing record, so both
    give identical results for identical inputs.

Invariants enforced:
    - Conservation (exact integer arithmetic):
        credit_used - overpayment == current_credit - new_credit
        sum(amount_paid) + overpayment - credit_used == payment_amount
    - Oldest-first walk; a partial payment ends the walk.
    - Partial payments are split by one configurable policy
      (penalties first by default).

Failure modes:
    - ValidationError on a blank unit id, or a negative payment/credit.
    - InvalidInputError if a month cutoff is given and a bill id is not a
      period key.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import date
from enum import Enum

from hoa_engines.penalty import PenaltyCalculator
from hoa_engines.tracer import traced_engine
from hoa_kernel.domain.billing import Bill, BillStatus, derive_status
from hoa_kernel.domain.fiscal import parse_period_key
from hoa_kernel.exceptions import ValidationError
from hoa_kernel.logging_config import get_logger

logger = get_logger("engines.distribution")


class PartialPaymentPolicy(str, Enum):
    """How a partial payment is split inside one bill."""

    PENALTY_FIRST = "penalty_first"
    BASE_FIRST = "base_first"


@dataclass(frozen=True)
class BillSettlement:
    """What one payment does to one bill."""

    bill_id: str
    unit_id: str
    unpaid_before: int
    amount_paid: int
    base_charge_paid: int
    penalty_paid: int
    previous_status: BillStatus
    new_status: BillStatus

    @property
    def period_key(self) -> str:
        return self.bill_id


@dataclass(frozen=True)
class Distribution:
    """
    Settlement plan for one payment.

    ``bills`` holds the bills exactly as walked (after any backdated
    penalty recalculation and month filtering) in walk order.
    """

    unit_id: str
    payment_amount: int
    current_credit_balance: int
    total_available: int
    total_bills_due: int
    settlements: tuple[BillSettlement, ...]
    total_base_charges: int
    total_penalties: int
    credit_used: int
    overpayment: int
    new_credit_balance: int
    backdated: bool = False
    as_of_date: date | None = None
    bills: tuple[Bill, ...] = field(default_factory=tuple)

    @property
    def total_applied(self) -> int:
        return self.total_base_charges + self.total_penalties

    @property
    def credit_delta(self) -> int:
        """Signed change to the credit balance."""
        return self.new_credit_balance - self.current_credit_balance

    @property
    def paid_settlements(self) -> tuple[BillSettlement, ...]:
        return tuple(s for s in self.settlements if s.amount_paid > 0)

    @property
    def is_noop(self) -> bool:
        return self.total_applied == 0 and self.credit_delta == 0


class DistributionEngine:
    """
    Computes payment distribution plans.

    Contract:
        ``distribute`` is pure: it reads only its arguments, never the
        clock or storage, and returns a frozen Distribution.

    Guarantees:
        - Both conservation identities hold exactly.
        - Bills after the first partially paid one receive nothing.
        - With no bills, the whole payment becomes overpayment (credit).

    Non-goals:
        - Does NOT write anything; see PaymentService for write-back.
    """

    def __init__(
        self,
        penalty_calculator: PenaltyCalculator | None = None,
        partial_policy: PartialPaymentPolicy = PartialPaymentPolicy.PENALTY_FIRST,
    ):
        self._penalties = penalty_calculator or PenaltyCalculator()
        self._partial_policy = partial_policy

    @property
    def partial_policy(self) -> PartialPaymentPolicy:
        return self._partial_policy

    @traced_engine(
        "distribution", "1.0",
        fingerprint_fields=(
            "unit_id", "payment_amount", "current_credit_balance",
            "unpaid_bills", "as_of_date", "today", "month_cutoff", "cutoff_year",
        ),
    )
    def distribute(
        self,
        *,
        unit_id: str,
        payment_amount: int,
        current_credit_balance: int,
        unpaid_bills: Sequence[Bill],
        as_of_date: date | None = None,
        today: date | None = None,
        month_cutoff: int | None = None,
        cutoff_year: int | None = None,
    ) -> Distribution:
        """
        Plan how ``payment_amount`` plus credit settles ``unpaid_bills``.

        Args:
            unit_id: Billing unit.
            payment_amount: Cash received, minor units, >= 0.
            current_credit_balance: Prepaid credit, minor units, >= 0.
            unpaid_bills: Outstanding bills, oldest first.
            as_of_date: Effective payment date.  When it differs from
                ``today`` every bill's penalty is recalculated as of it.
            today: The caller's current date.
            month_cutoff: Pay through this fiscal month only.  Bills with a
                later ``(fiscal_year, month)`` than ``(cutoff_year,
                month_cutoff)`` are left out of the walk.
            cutoff_year: Fiscal year the cutoff month belongs to.  Defaults
                to the fiscal year of the newest bill.
        """
        self._validate(unit_id, payment_amount, current_credit_balance, month_cutoff)

        backdated = as_of_date is not None and today is not None and as_of_date != today
        bills = self._prepare_bills(
            unpaid_bills, as_of_date, backdated, month_cutoff, cutoff_year
        )

        total_available = payment_amount + current_credit_balance
        total_bills_due = sum(b.unpaid_total for b in bills)

        settlements = self._walk(bills, total_available)

        total_base = sum(s.base_charge_paid for s in settlements)
        total_penalties = sum(s.penalty_paid for s in settlements)

        if not bills:
            credit_used, overpayment = 0, payment_amount
        elif payment_amount < total_bills_due:
            credit_used = min(total_bills_due - payment_amount, current_credit_balance)
            overpayment = 0
        else:
            credit_used = 0
            overpayment = payment_amount - total_bills_due
        new_credit_balance = current_credit_balance - credit_used + overpayment

        assert total_base + total_penalties + overpayment - credit_used == payment_amount, (
            "Distribution conservation violated"
        )

        logger.info(
            "distribution_completed",
            extra={
                "unit_id": unit_id,
                "payment_amount": payment_amount,
                "current_credit_balance": current_credit_balance,
                "bills_walked": len(bills),
                "bills_paid": sum(1 for s in settlements if s.new_status == BillStatus.PAID),
                "total_applied": total_base + total_penalties,
                "credit_used": credit_used,
                "overpayment": overpayment,
                "new_credit_balance": new_credit_balance,
                "backdated": backdated,
                "partial_policy": self._partial_policy.value,
            },
        )

        return Distribution(
            unit_id=unit_id,
            payment_amount=payment_amount,
            current_credit_balance=current_credit_balance,
            total_available=total_available,
            total_bills_due=total_bills_due,
            settlements=tuple(settlements),
            total_base_charges=total_base,
            total_penalties=total_penalties,
            credit_used=credit_used,
            overpayment=overpayment,
            new_credit_balance=new_credit_balance,
            backdated=backdated,
            as_of_date=as_of_date,
            bills=tuple(bills),
        )

    # =========================================================================
    # Internal
    # =========================================================================

    @staticmethod
    def _validate(
        unit_id: str,
        payment_amount: int,
        current_credit_balance: int,
        month_cutoff: int | None,
    ) -> None:
        if not unit_id or not str(unit_id).strip():
            raise ValidationError("unit_id is required", field="unit_id")
        if payment_amount < 0:
            raise ValidationError(
                f"Payment amount cannot be negative: {payment_amount}", field="payment_amount"
            )
        if current_credit_balance < 0:
            raise ValidationError(
                f"Credit balance cannot be negative: {current_credit_balance}",
                field="current_credit_balance",
            )
        if month_cutoff is not None and not 0 <= month_cutoff <= 11:
            raise ValidationError(
                f"month_cutoff must be 0-11, got {month_cutoff}", field="month_cutoff"
            )

    def _prepare_bills(
        self,
        unpaid_bills: Sequence[Bill],
        as_of_date: date | None,
        backdated: bool,
        month_cutoff: int | None,
        cutoff_year: int | None,
    ) -> list[Bill]:
        bills = list(unpaid_bills)
        if month_cutoff is not None and bills:
            periods = [parse_period_key(b.bill_id) for b in bills]
            if cutoff_year is None:
                cutoff_year = max(year for year, _ in periods)
            limit = (cutoff_year, month_cutoff)
            bills = [b for b, period in zip(bills, periods) if period <= limit]
        if backdated:
            bills = [self._penalties.apply(b, as_of_date, reset_payments=True) for b in bills]
        return [b for b in bills if b.unpaid_total > 0]

    def _walk(self, bills: list[Bill], total_available: int) -> list[BillSettlement]:
        remaining = total_available
        settlements: list[BillSettlement] = []

        for bill in bills:
            unpaid_total = bill.unpaid_total

            if remaining >= unpaid_total:
                base_paid, penalty_paid = bill.unpaid_base, bill.unpaid_penalty
                remaining -= unpaid_total
            elif remaining > 0:
                base_paid, penalty_paid = self._split_partial(bill, remaining)
                remaining = 0
            else:
                base_paid, penalty_paid = 0, 0

            paid = base_paid + penalty_paid
            settlements.append(
                BillSettlement(
                    bill_id=bill.bill_id,
                    unit_id=bill.unit_id,
                    unpaid_before=unpaid_total,
                    amount_paid=paid,
                    base_charge_paid=base_paid,
                    penalty_paid=penalty_paid,
                    previous_status=bill.status,
                    new_status=derive_status(bill.paid_amount + paid, bill.total_amount),
                )
            )

        return settlements

    def _split_partial(self, bill: Bill, funds: int) -> tuple[int, int]:
        """(base_paid, penalty_paid) for funds smaller than the bill's unpaid total."""
        if self._partial_policy == PartialPaymentPolicy.PENALTY_FIRST:
            penalty_paid = min(funds, bill.unpaid_penalty)
            return funds - penalty_paid, penalty_paid
        base_paid = min(funds, bill.unpaid_base)
        return base_paid, funds - base_paid
