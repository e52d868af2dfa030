"""
hoa_services.payment_service -- Payment preview and recording.

Responsibility:
    Orchestrates a payment request end to end: read the unit's unpaid bills
    and credit, plan the distribution, build allocations, and (for record)
    write the transaction, the credit ledger entry, the bill payment
    entries and the dues month slots in one database transaction.

Architecture position:
    Services -- stateful orchestration over engines + stores.
    Composes DistributionEngine and AllocationBuilder (pure) with the
    SQLAlchemy stores in this package.

Invariants enforced:
    - Preview and record share one planning path, so identical inputs give
      identical results.  Preview never writes.
    - The allocation integrity check runs before any write; a failing check
      leaves storage untouched.
    - Every write of a record happens in one commit; any failure rolls the
      whole record back.
    - Account balance and cache refresh are best-effort: their failures are
      logged and never undo a committed payment.

Failure modes:
    - ValidationError / InvalidInputError for bad requests.
    - IntegrityViolationError when allocations do not reconcile.
    - InsufficientCreditError if the credit ledger changed underneath the
      plan and would go negative.
    - Any storage error from the write phase, after rollback.

Usage:
    service = PaymentService(session, config=get_active_config("ledger.yaml"))
    preview = service.preview_payment(PaymentRequest(unit_id="203", amount="950.00"))
    result = service.record_payment(PaymentRequest(unit_id="203", amount="950.00"))
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from hoa_config.bridges import (
    build_allocation_builder,
    build_clock,
    build_distribution_engine,
    build_fiscal_calendar,
)
from hoa_config.schema import LedgerConfig
from hoa_engines.allocation import Allocation, AllocationBuilder, AllocationSummary, category_for
from hoa_engines.distribution import Distribution
from hoa_kernel.domain.billing import Bill, BillingModule, PaymentEntry
from hoa_kernel.domain.clock import Clock
from hoa_kernel.domain.credit import CreditEntry
from hoa_kernel.domain.currency import format_major, to_major_units, to_minor_units
from hoa_kernel.domain.dtos import TransactionData
from hoa_kernel.domain.fiscal import FiscalCalendar, parse_period_key
from hoa_kernel.exceptions import (
    BestEffortFailureError,
    IntegrityViolationError,
    ValidationError,
)
from hoa_kernel.logging_config import LogContext, get_logger
from hoa_services.account_balance import AccountBalanceAdapter
from hoa_services.bill_repository import BillRepository
from hoa_services.cache_refresh import PeriodSummaryCache
from hoa_services.credit_ledger import CreditLedgerStore
from hoa_services.dues_ledger import DuesLedgerStore
from hoa_services.transaction_store import TransactionStore

logger = get_logger("services.payment")

_MODULE_LABELS = {
    BillingModule.WATER: "Water bill",
    BillingModule.HOA: "HOA dues",
}


@dataclass(frozen=True)
class PaymentRequest:
    """A payment as entered by a user.  ``amount`` is in major units."""

    unit_id: str
    amount: Decimal | str | int | float
    as_of_date: date | None = None
    month_cutoff: int | None = None
    cutoff_year: int | None = None
    method: str | None = None
    reference: str | None = None
    notes: str = ""
    account_id: str | None = None
    billing_module: BillingModule | str | None = None
    fiscal_year: int | None = None


@dataclass(frozen=True)
class PaymentPlan:
    """Everything computed for a request before any write."""

    unit_id: str
    amount: int
    billing_module: BillingModule
    fiscal_year: int
    payment_date: date
    source_bills: tuple[Bill, ...]
    distribution: Distribution
    allocations: tuple[Allocation, ...]
    summary: AllocationSummary


@dataclass(frozen=True)
class PaymentPreview:
    """What-if result in major units."""

    unit_id: str
    payment_amount: Decimal
    current_credit_balance: Decimal
    total_available: Decimal
    total_bills_due: Decimal
    total_base_charges: Decimal
    total_penalties: Decimal
    credit_used: Decimal
    overpayment: Decimal
    new_credit_balance: Decimal
    backdated: bool
    bill_payments: tuple[dict[str, Any], ...]
    allocations: tuple[dict[str, Any], ...]
    allocation_summary: dict[str, Any]
    distribution: Distribution

    def to_dict(self) -> dict[str, Any]:
        return {
            "unit_id": self.unit_id,
            "payment_amount": str(self.payment_amount),
            "current_credit_balance": str(self.current_credit_balance),
            "total_available": str(self.total_available),
            "total_bills_due": str(self.total_bills_due),
            "total_base_charges": str(self.total_base_charges),
            "total_penalties": str(self.total_penalties),
            "credit_used": str(self.credit_used),
            "overpayment": str(self.overpayment),
            "new_credit_balance": str(self.new_credit_balance),
            "backdated": self.backdated,
            "bill_payments": [dict(b) for b in self.bill_payments],
            "allocations": [dict(a) for a in self.allocations],
            "allocation_summary": dict(self.allocation_summary),
        }


@dataclass(frozen=True)
class PaymentRecordResult:
    transaction_id: str
    distribution: Distribution
    allocations: tuple[Allocation, ...]
    summary: AllocationSummary
    bills_updated: tuple[str, ...]
    credit_entry: CreditEntry | None
    new_credit_balance: int
    warnings: tuple[str, ...] = field(default_factory=tuple)


# =============================================================================
# Transaction text
# =============================================================================


def transaction_description(
    unit_id: str,
    distribution: Distribution,
    billing_module: BillingModule = BillingModule.WATER,
) -> str:
    label = _MODULE_LABELS[billing_module]
    if not distribution.paid_settlements:
        return f"{label} credit - Unit {unit_id}"
    return f"{label} payment - Unit {unit_id}"


def transaction_notes(
    unit_id: str,
    distribution: Distribution,
    billing_module: BillingModule = BillingModule.WATER,
    user_notes: str = "",
    calendar: FiscalCalendar | None = None,
) -> str:
    """``"Water bill payment for Unit 203 - Jul 2025, Aug 2025 - note - $44.00 charges + $6.00 penalties"``."""
    calendar = calendar or FiscalCalendar()
    label = _MODULE_LABELS[billing_module]
    notes_text = f" - {user_notes}" if user_notes else ""
    paid = distribution.paid_settlements

    if not paid:
        return (
            f"{label} payment for Unit {unit_id} - No bills due{notes_text} - "
            f"{format_major(distribution.payment_amount)} credit"
        )

    periods = ", ".join(calendar.readable_period(s.bill_id) for s in paid)
    base, penalties = distribution.total_base_charges, distribution.total_penalties
    if base > 0 and penalties > 0:
        breakdown = f"{format_major(base)} charges + {format_major(penalties)} penalties"
    elif base > 0:
        breakdown = f"{format_major(base)} charges"
    else:
        breakdown = f"{format_major(penalties)} penalties"
    return f"{label} payment for Unit {unit_id} - {periods}{notes_text} - {breakdown}"


def credit_description(distribution: Distribution) -> str:
    paid = distribution.paid_settlements
    if not paid:
        return "Overpayment - no bills due"
    return (
        f"Bills paid: {', '.join(s.bill_id for s in paid)} "
        f"(Base: {format_major(distribution.total_base_charges)}, "
        f"Penalties: {format_major(distribution.total_penalties)})"
    )


# =============================================================================
# Service
# =============================================================================


class PaymentService:
    """
    Previews and records payments for one billing module at a time.

    Contract:
        ``preview_payment`` reads only.  ``record_payment`` commits on
        success and rolls back on any failure before re-raising.

    Guarantees:
        - Credit ledger entry, bill payment entries and dues slots written
          by a record all carry the new transaction id, so deletion can find
          and reverse them.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        config: LedgerConfig | None = None,
        bills: BillRepository | None = None,
        credit: CreditLedgerStore | None = None,
        transactions: TransactionStore | None = None,
        accounts: AccountBalanceAdapter | None = None,
        dues: DuesLedgerStore | None = None,
        cache: PeriodSummaryCache | None = None,
    ):
        self.session = session
        self._config = config or LedgerConfig()
        self._clock = clock or build_clock(self._config)
        self._bills = bills or BillRepository(session)
        self._credit = credit or CreditLedgerStore(session)
        self._transactions = transactions or TransactionStore(session)
        self._accounts = accounts or AccountBalanceAdapter(session)
        self._dues = dues or DuesLedgerStore(session)
        self._cache = cache
        self._calendar = build_fiscal_calendar(self._config)
        self._engine = build_distribution_engine(self._config)

    # =========================================================================
    # Preview
    # =========================================================================

    def preview_payment(self, request: PaymentRequest) -> PaymentPreview:
        """Compute what recording ``request`` would do, without writing."""
        with LogContext.bind(unit_id=request.unit_id, billing_module=request.billing_module):
            plan = self._plan(request, allow_zero=True)
            d = plan.distribution

            logger.info(
                "payment_previewed",
                extra={
                    "payment_amount": plan.amount,
                    "bills_paid": len(d.paid_settlements),
                    "new_credit_balance": d.new_credit_balance,
                    "backdated": d.backdated,
                },
            )

            return PaymentPreview(
                unit_id=plan.unit_id,
                payment_amount=to_major_units(d.payment_amount),
                current_credit_balance=to_major_units(d.current_credit_balance),
                total_available=to_major_units(d.total_available),
                total_bills_due=to_major_units(d.total_bills_due),
                total_base_charges=to_major_units(d.total_base_charges),
                total_penalties=to_major_units(d.total_penalties),
                credit_used=to_major_units(d.credit_used),
                overpayment=to_major_units(d.overpayment),
                new_credit_balance=to_major_units(d.new_credit_balance),
                backdated=d.backdated,
                bill_payments=tuple(
                    {
                        "bill_id": s.bill_id,
                        "period": self._calendar.readable_period(s.bill_id),
                        "unpaid_before": to_major_units(s.unpaid_before),
                        "amount_paid": to_major_units(s.amount_paid),
                        "base_charge_paid": to_major_units(s.base_charge_paid),
                        "penalty_paid": to_major_units(s.penalty_paid),
                        "previous_status": s.previous_status.value,
                        "new_status": s.new_status.value,
                    }
                    for s in d.settlements
                ),
                allocations=tuple(
                    {**a.to_dict(), "amount": to_major_units(a.amount)} for a in plan.allocations
                ),
                allocation_summary=plan.summary.to_dict(),
                distribution=d,
            )

    # =========================================================================
    # Record
    # =========================================================================

    def record_payment(self, request: PaymentRequest) -> PaymentRecordResult:
        """Record ``request``: one commit for the transaction and every bill/credit write."""
        with LogContext.bind(unit_id=request.unit_id, billing_module=request.billing_module):
            plan = self._plan(request, allow_zero=False)
            d = plan.distribution

            integrity = plan.summary.integrity_check
            if not integrity.is_valid:
                logger.error(
                    "payment_integrity_check_failed",
                    extra={
                        "expected_total": integrity.expected_total,
                        "actual_total": integrity.actual_total,
                    },
                )
                raise IntegrityViolationError(
                    integrity.expected_total,
                    integrity.actual_total,
                    self._config.integrity_tolerance,
                )
            self._builder(plan.billing_module).validate_allocations(plan.allocations, plan.amount)

            logger.info(
                "payment_record_started",
                extra={
                    "payment_amount": plan.amount,
                    "billing_module": plan.billing_module.value,
                    "fiscal_year": plan.fiscal_year,
                    "allocation_count": len(plan.allocations),
                },
            )

            warnings: list[str] = []
            try:
                txn = self._transactions.create(self._transaction_data(request, plan))

                credit_entry = self._credit.update_balance(
                    plan.unit_id,
                    plan.fiscal_year,
                    d.credit_delta,
                    self._clock.now(),
                    transaction_id=txn.id,
                    description=credit_description(d),
                )

                self._persist_penalty_updates(plan)
                bills_updated = self._write_back_bills(request, plan, txn.id)

                if request.account_id:
                    warning = self._adjust_account(request.account_id, plan.amount, txn.id)
                    if warning:
                        warnings.append(warning)

                self.session.commit()
            except Exception:
                self.session.rollback()
                logger.error("payment_record_failed", exc_info=True)
                raise

            logger.info(
                "payment_record_committed",
                extra={
                    "transaction_id": txn.id,
                    "bills_updated": list(bills_updated),
                    "credit_used": d.credit_used,
                    "overpayment": d.overpayment,
                    "new_credit_balance": d.new_credit_balance,
                },
            )

            warning = self._refresh_cache(plan.unit_id, bills_updated, plan.billing_module)
            if warning:
                warnings.append(warning)

            return PaymentRecordResult(
                transaction_id=txn.id,
                distribution=d,
                allocations=plan.allocations,
                summary=plan.summary,
                bills_updated=bills_updated,
                credit_entry=credit_entry,
                new_credit_balance=d.new_credit_balance,
                warnings=tuple(warnings),
            )

    # =========================================================================
    # Planning
    # =========================================================================

    def _plan(self, request: PaymentRequest, allow_zero: bool) -> PaymentPlan:
        if not request.unit_id or not str(request.unit_id).strip():
            raise ValidationError("unit_id is required", field="unit_id")
        amount = to_minor_units(request.amount)
        if amount < 0 or (amount == 0 and not allow_zero):
            raise ValidationError(
                f"Payment amount must be positive, got {request.amount}", field="amount"
            )

        module = BillingModule(request.billing_module or self._config.default_billing_module)
        today = self._clock.today()
        payment_date = request.as_of_date or today
        fiscal_year = request.fiscal_year or self._calendar.fiscal_year_for(payment_date)

        source_bills = tuple(self._bills.list_unpaid_bills(request.unit_id, billing_module=module))
        credit = self._credit.get_balance(request.unit_id, fiscal_year)

        distribution = self._engine.distribute(
            unit_id=request.unit_id,
            payment_amount=amount,
            current_credit_balance=credit.current_balance,
            unpaid_bills=source_bills,
            as_of_date=request.as_of_date,
            today=today,
            month_cutoff=request.month_cutoff,
            cutoff_year=request.cutoff_year,
        )
        builder = self._builder(module)
        allocations = builder.build_allocations(distribution, unit_id=request.unit_id)
        summary = builder.build_summary(distribution, allocations, amount)

        return PaymentPlan(
            unit_id=request.unit_id,
            amount=amount,
            billing_module=module,
            fiscal_year=fiscal_year,
            payment_date=payment_date,
            source_bills=source_bills,
            distribution=distribution,
            allocations=allocations,
            summary=summary,
        )

    def _builder(self, module: BillingModule) -> AllocationBuilder:
        return build_allocation_builder(self._config, module)

    def _transaction_data(self, request: PaymentRequest, plan: PaymentPlan) -> TransactionData:
        d = plan.distribution
        category_id, category_name = category_for(plan.allocations)
        return TransactionData(
            unit_id=plan.unit_id,
            amount=plan.amount,
            date=plan.payment_date,
            allocations=tuple(a.to_dict() for a in plan.allocations),
            allocation_summary=plan.summary.to_dict(),
            metadata={
                "fiscal_year": plan.fiscal_year,
                "billing_module": plan.billing_module.value,
                "backdated": d.backdated,
                "credit_used": d.credit_used,
                "overpayment": d.overpayment,
                "bill_payments": [
                    {
                        "bill_id": s.bill_id,
                        "amount_paid": s.amount_paid,
                        "base_charge_paid": s.base_charge_paid,
                        "penalty_paid": s.penalty_paid,
                    }
                    for s in d.paid_settlements
                ],
            },
            category_id=category_id,
            category_name=category_name,
            account_id=request.account_id,
            description=transaction_description(plan.unit_id, d, plan.billing_module),
            notes=transaction_notes(
                plan.unit_id, d, plan.billing_module, request.notes, self._calendar
            ),
            method=request.method,
            reference=request.reference,
            billing_module=plan.billing_module.value,
        )

    # =========================================================================
    # Write phase
    # =========================================================================

    def _persist_penalty_updates(self, plan: PaymentPlan) -> None:
        """Store penalties recalculated for a backdated payment."""
        if not plan.distribution.backdated:
            return
        stored = {b.bill_id: b.penalty_amount for b in plan.source_bills}
        for bill in plan.distribution.bills:
            if bill.bill_id in stored and bill.penalty_amount != stored[bill.bill_id]:
                self._bills.update_bill_penalty(
                    bill.bill_id,
                    bill.unit_id,
                    bill.penalty_amount,
                    plan.distribution.as_of_date,
                    plan.billing_module,
                )

    def _write_back_bills(
        self,
        request: PaymentRequest,
        plan: PaymentPlan,
        transaction_id: str,
    ) -> tuple[str, ...]:
        updated: list[str] = []
        recorded_at = self._clock.now()
        for settlement in plan.distribution.paid_settlements:
            entry = PaymentEntry(
                amount=settlement.amount_paid,
                base_charge_paid=settlement.base_charge_paid,
                penalty_paid=settlement.penalty_paid,
                date=plan.payment_date,
                transaction_id=transaction_id,
                recorded_at=recorded_at,
                method=request.method,
                reference=request.reference,
            )
            self._bills.update_bill_payment(
                settlement.bill_id, plan.unit_id, entry, plan.billing_module
            )
            if plan.billing_module == BillingModule.HOA:
                fiscal_year, fiscal_month = parse_period_key(settlement.bill_id)
                self._dues.mark_month(
                    plan.unit_id,
                    fiscal_year,
                    fiscal_month,
                    settlement.amount_paid,
                    plan.payment_date,
                    transaction_id,
                    notes=request.notes,
                )
            updated.append(settlement.bill_id)
        return tuple(updated)

    def _adjust_account(self, account_id: str, amount: int, transaction_id: str) -> str | None:
        try:
            with self.session.begin_nested():
                self._accounts.adjust(account_id, amount)
        except Exception as exc:
            failure = BestEffortFailureError("account_adjust", str(exc))
            logger.warning(
                "account_adjust_failed",
                extra={
                    "account_id": account_id,
                    "change": amount,
                    "error_code": failure.code,
                    "reason": failure.reason,
                },
            )
            return str(failure)
        return None

    def _refresh_cache(
        self,
        unit_id: str,
        periods: tuple[str, ...],
        module: BillingModule,
    ) -> str | None:
        if self._cache is None or not periods:
            return None
        try:
            self._cache.refresh_periods(unit_id, periods, module)
        except Exception as exc:
            failure = BestEffortFailureError("cache_refresh", str(exc))
            logger.warning(
                "cache_refresh_failed",
                extra={
                    "periods": list(periods),
                    "error_code": failure.code,
                    "reason": failure.reason,
                },
            )
            return str(failure)
        return None
