"""
hoa_engines.allocation -- Allocation builder.

Responsibility:
    Turn a Distribution into the typed, auditable allocation lines stored
    on the parent transaction, plus an integrity-checked summary.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Sign convention: a ``credit_adjustment`` is positive when credit is
      added (overpayment) and negative when credit is consumed.  The signed
      sum of all allocations therefore equals the transaction amount.
    - Every allocation is marked ``cleanup_required`` so deletion knows it
      must be reversed.

Failure modes:
    - IntegrityViolationError from ``validate_allocations`` when the signed
      total misses the transaction amount by more than the tolerance.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from hoa_engines.distribution import Distribution
from hoa_engines.tracer import traced_engine
from hoa_kernel.domain.billing import BillingModule
from hoa_kernel.domain.currency import INTEGRITY_TOLERANCE_MINOR_UNITS
from hoa_kernel.domain.fiscal import FiscalCalendar
from hoa_kernel.exceptions import IntegrityViolationError
from hoa_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

SPLIT_CATEGORY_ID = "-split-"
SPLIT_CATEGORY_NAME = "-Split-"

CREDIT_CATEGORY_ID = "account-credit"
CREDIT_CATEGORY_NAME = "Account Credit"


class AllocationType(str, Enum):
    BILL_BASE = "bill_base"
    BILL_PENALTY = "bill_penalty"
    CREDIT_ADJUSTMENT = "credit_adjustment"


@dataclass(frozen=True)
class ModuleCategories:
    base_category_id: str
    base_category_name: str
    penalty_category_id: str
    penalty_category_name: str


MODULE_CATEGORIES: dict[BillingModule, ModuleCategories] = {
    BillingModule.WATER: ModuleCategories(
        "water-consumption", "Water Consumption", "water-penalties", "Water Penalties"
    ),
    BillingModule.HOA: ModuleCategories(
        "hoa-dues", "HOA Dues", "hoa-penalties", "HOA Penalties"
    ),
}


def allocation_id(index: int) -> str:
    """``alloc_001``, ``alloc_002``, ... (1-based)."""
    return f"alloc_{index:03d}"


@dataclass(frozen=True)
class Allocation:
    """One typed line of a transaction's breakdown (signed minor units)."""

    id: str
    type: AllocationType
    target_id: str
    target_name: str
    amount: int
    category_id: str
    category_name: str
    data: Mapping[str, Any] = field(default_factory=dict)
    cleanup_required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "target_id": self.target_id,
            "target_name": self.target_name,
            "amount": self.amount,
            "category_id": self.category_id,
            "category_name": self.category_name,
            "data": dict(self.data),
            "metadata": {"cleanup_required": self.cleanup_required},
        }


@dataclass(frozen=True)
class IntegrityCheck:
    expected_total: int
    actual_total: int
    is_valid: bool


@dataclass(frozen=True)
class AllocationSummary:
    total_allocated: int
    allocation_count: int
    has_multiple_types: bool
    integrity_check: IntegrityCheck

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_allocated": self.total_allocated,
            "allocation_count": self.allocation_count,
            "has_multiple_types": self.has_multiple_types,
            "integrity_check": {
                "expected_total": self.integrity_check.expected_total,
                "actual_total": self.integrity_check.actual_total,
                "is_valid": self.integrity_check.is_valid,
            },
        }


def category_for(allocations: Sequence[Allocation]) -> tuple[str | None, str | None]:
    """Category of the parent transaction: the split sentinel for >1 allocation."""
    if len(allocations) > 1:
        return SPLIT_CATEGORY_ID, SPLIT_CATEGORY_NAME
    if allocations:
        return allocations[0].category_id, allocations[0].category_name
    return None, None


class AllocationBuilder:
    """
    Builds allocations and summaries for one billing module.

    Contract:
        Pure; the same Distribution always yields the same allocations,
        including ids.
    """

    def __init__(
        self,
        billing_module: BillingModule = BillingModule.WATER,
        calendar: FiscalCalendar | None = None,
        tolerance: int = INTEGRITY_TOLERANCE_MINOR_UNITS,
    ):
        self._module = BillingModule(billing_module)
        self._categories = MODULE_CATEGORIES[self._module]
        self._calendar = calendar or FiscalCalendar()
        self._tolerance = tolerance

    @traced_engine("allocation", "1.0", fingerprint_fields=("unit_id",))
    def build_allocations(self, distribution: Distribution, *, unit_id: str) -> tuple[Allocation, ...]:
        allocations: list[Allocation] = []

        for settlement in distribution.paid_settlements:
            period_text = self._calendar.readable_period(settlement.bill_id)
            data = {
                "unit_id": unit_id,
                "bill_id": settlement.bill_id,
                "bill_period": settlement.bill_id,
            }
            if settlement.base_charge_paid > 0:
                allocations.append(
                    Allocation(
                        id=allocation_id(len(allocations) + 1),
                        type=AllocationType.BILL_BASE,
                        target_id=f"bill_{settlement.bill_id}",
                        target_name=f"{period_text} - Unit {unit_id}",
                        amount=settlement.base_charge_paid,
                        category_id=self._categories.base_category_id,
                        category_name=self._categories.base_category_name,
                        data={**data, "bill_type": "base_charge"},
                    )
                )
            if settlement.penalty_paid > 0:
                allocations.append(
                    Allocation(
                        id=allocation_id(len(allocations) + 1),
                        type=AllocationType.BILL_PENALTY,
                        target_id=f"penalty_{settlement.bill_id}",
                        target_name=f"{period_text} Penalties - Unit {unit_id}",
                        amount=settlement.penalty_paid,
                        category_id=self._categories.penalty_category_id,
                        category_name=self._categories.penalty_category_name,
                        data={**data, "bill_type": "penalty"},
                    )
                )

        credit_amount = 0
        credit_kind = ""
        if distribution.overpayment > 0:
            credit_amount, credit_kind = distribution.overpayment, "overpayment"
        elif distribution.credit_used > 0:
            credit_amount, credit_kind = -distribution.credit_used, "credit_used"

        if credit_amount:
            allocations.append(
                Allocation(
                    id=allocation_id(len(allocations) + 1),
                    type=AllocationType.CREDIT_ADJUSTMENT,
                    target_id=f"credit_{unit_id}_{self._module.value}",
                    target_name=f"Account Credit - Unit {unit_id}",
                    amount=credit_amount,
                    category_id=CREDIT_CATEGORY_ID,
                    category_name=CREDIT_CATEGORY_NAME,
                    data={"unit_id": unit_id, "credit_type": f"{self._module.value}_{credit_kind}"},
                )
            )

        return tuple(allocations)

    def build_summary(
        self,
        distribution: Distribution,
        allocations: Sequence[Allocation],
        transaction_amount: int,
    ) -> AllocationSummary:
        """Summary whose integrity check compares the bill portion of the payment
        (transaction amount minus credit delta) to what the bills received."""
        actual = distribution.total_base_charges + distribution.total_penalties
        expected = transaction_amount - distribution.credit_delta
        types = {a.type for a in allocations if a.type != AllocationType.CREDIT_ADJUSTMENT}
        return AllocationSummary(
            total_allocated=actual,
            allocation_count=len(allocations),
            has_multiple_types=len(types) > 1,
            integrity_check=IntegrityCheck(
                expected_total=expected,
                actual_total=actual,
                is_valid=abs(expected - actual) <= self._tolerance,
            ),
        )

    def validate_allocations(
        self,
        allocations: Sequence[Allocation],
        transaction_amount: int,
    ) -> None:
        """Raise IntegrityViolationError unless the signed allocation total
        reconciles to the transaction amount within tolerance."""
        total = sum(a.amount for a in allocations)
        if not allocations and transaction_amount != 0:
            raise IntegrityViolationError(transaction_amount, 0, self._tolerance)
        if abs(total - transaction_amount) > self._tolerance:
            logger.error(
                "allocation_integrity_failed",
                extra={
                    "expected_total": transaction_amount,
                    "actual_total": total,
                    "tolerance": self._tolerance,
                    "allocation_count": len(allocations),
                },
            )
            raise IntegrityViolationError(transaction_amount, total, self._tolerance)
