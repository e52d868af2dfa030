"""
Module: hoa_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for
    hoa_services.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import hoa_kernel (domain, exceptions, logging) and sibling
    engine modules.  MUST NOT import hoa_services.

Invariants enforced:
    - Purity: engines never call ``datetime.now()`` or ``date.today()``.
      Dates are passed in by the caller.
    - Integer minor units for all money; rates are Decimal.
    - Determinism: identical inputs always produce identical outputs.

Audit relevance:
    Engine entry points are traced via ``@traced_engine`` (see
    ``hoa_engines.tracer``), emitting LEDGER_ENGINE_TRACE log records.

Usage:
    from hoa_engines import DistributionEngine, AllocationBuilder
    from hoa_engines.penalty import PenaltyCalculator
    from hoa_engines.compensation import plan_credit_reversal
"""

from hoa_engines.allocation import (
    Allocation,
    AllocationBuilder,
    AllocationSummary,
    AllocationType,
    IntegrityCheck,
    SPLIT_CATEGORY_ID,
    category_for,
)
from hoa_engines.compensation import (
    BillReversal,
    CreditReversal,
    DeletionPlan,
    DuesCleanup,
    audit_action,
    normalize_month_slots,
    plan_bill_reversal,
    plan_credit_reversal,
    plan_dues_cleanup,
)
from hoa_engines.distribution import (
    BillSettlement,
    Distribution,
    DistributionEngine,
    PartialPaymentPolicy,
)
from hoa_engines.metered_billing import MeteredBillingCalculator, MeteredCharge
from hoa_engines.penalty import (
    CompoundPenaltyResult,
    ConsumptionResult,
    CreditApplication,
    PenaltyCalculator,
    PenaltyRecalculation,
    apply_credit,
    compound_penalty,
    consumption,
    days_late,
    months_late,
    water_charge,
)
from hoa_engines.tracer import compute_input_fingerprint, traced_engine

__all__ = [
    "Allocation",
    "AllocationBuilder",
    "AllocationSummary",
    "AllocationType",
    "IntegrityCheck",
    "SPLIT_CATEGORY_ID",
    "category_for",
    "BillReversal",
    "CreditReversal",
    "DeletionPlan",
    "DuesCleanup",
    "audit_action",
    "normalize_month_slots",
    "plan_bill_reversal",
    "plan_credit_reversal",
    "plan_dues_cleanup",
    "BillSettlement",
    "Distribution",
    "DistributionEngine",
    "PartialPaymentPolicy",
    "MeteredBillingCalculator",
    "MeteredCharge",
    "CompoundPenaltyResult",
    "ConsumptionResult",
    "CreditApplication",
    "PenaltyCalculator",
    "PenaltyRecalculation",
    "apply_credit",
    "compound_penalty",
    "consumption",
    "days_late",
    "months_late",
    "water_charge",
    "compute_input_fingerprint",
    "traced_engine",
]
