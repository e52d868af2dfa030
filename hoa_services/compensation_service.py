"""
hoa_services.compensation_service -- Transaction deletion with compensation.

Responsibility:
    Deletes a payment transaction and reverses everything it did: the
    credit ledger entries, the bill payment entries, the dues month slots
    and the account balance, then writes an audit row.

Architecture position:
    Services -- stateful orchestration over engines + stores.
    Plans come from the pure hoa_engines.compensation module.

Protocol:
    Phase A (credit reversal) is committed on its own first.  It is the
    simple, exactly-invertible step.
    Phase B (bill/dues cleanup, transaction delete, audit) runs as one
    database transaction with the rows read FOR UPDATE.

    If phase B fails, phase A is rolled back by restoring the removed
    entries and the previous balance.  If that restore also fails the
    ledger needs manual reconciliation: this is logged at CRITICAL with
    the expected and actual balance and never retried.

Failure modes:
    - TransactionNotFoundError: nothing to delete; nothing written.
    - CompensationFailureError: phase B failed.  ``rollback_succeeded``
      says whether phase A was undone.  The original error is
      ``__cause__``.

Audit relevance:
    Every successful deletion writes one ``audit_log`` row whose action is
    ``delete``, ``delete_with_water_cleanup``, ``delete_with_hoa_cleanup``
    or ``delete_with_multi_cleanup``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from hoa_config.bridges import build_clock, build_fiscal_calendar
from hoa_config.schema import LedgerConfig
from hoa_engines.compensation import (
    BillReversal,
    CreditReversal,
    DeletionPlan,
    DuesCleanup,
    plan_bill_reversal,
    plan_credit_reversal,
    plan_dues_cleanup,
)
from hoa_kernel.domain.billing import BillingModule
from hoa_kernel.domain.clock import Clock
from hoa_kernel.domain.dtos import TransactionRecord
from hoa_kernel.exceptions import (
    BestEffortFailureError,
    CompensationFailureError,
    FatalReconciliationRequiredError,
)
from hoa_kernel.logging_config import LogContext, get_logger
from hoa_services.account_balance import AccountBalanceAdapter
from hoa_services.bill_repository import BillRepository
from hoa_services.cache_refresh import PeriodSummaryCache
from hoa_services.credit_ledger import CreditLedgerStore, RemovedCreditEntry
from hoa_services.dues_ledger import DuesLedgerStore
from hoa_services.transaction_store import TransactionStore

logger = get_logger("services.compensation")


@dataclass(frozen=True)
class CompensationResult:
    transaction_id: str
    unit_id: str
    action: str
    credit_reversal: CreditReversal
    bill_reversals: tuple[BillReversal, ...] = ()
    dues_cleanup: DuesCleanup | None = None
    account_reversed: bool = False
    warnings: tuple[str, ...] = field(default_factory=tuple)

    @property
    def bills_reversed(self) -> tuple[str, ...]:
        return tuple(r.bill_id for r in self.bill_reversals)


@dataclass(frozen=True)
class _PhaseAState:
    """What phase A changed, kept for its rollback."""

    unit_id: str
    fiscal_year: int
    reversal: CreditReversal
    removed: tuple[RemovedCreditEntry, ...]


class CompensationService:
    """
    Deletes transactions and compensates their side effects.

    Contract:
        ``delete_transaction`` either fully deletes the transaction with all
        reversals committed, or leaves storage as it was before the call
        (unless the phase A rollback itself fails, which is reported).

    Non-goals:
        - Does NOT survive a process crash between phase A and phase B;
          the log records enough to reconcile by hand.
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

    def delete_transaction(self, transaction_id: str) -> CompensationResult:
        """Delete ``transaction_id`` and reverse its effects."""
        txn = self._transactions.get(transaction_id)

        with LogContext.bind(unit_id=txn.unit_id, transaction_id=txn.id):
            logger.info(
                "compensation_started",
                extra={"amount": txn.amount, "billing_module": txn.billing_module},
            )

            phase_a = self._phase_a(txn)

            try:
                result, warnings = self._phase_b(txn, phase_a)
            except Exception as exc:
                self.session.rollback()
                logger.error(
                    "compensation_phase_b_failed",
                    extra={"reason": str(exc)},
                    exc_info=True,
                )
                rollback_succeeded = self._rollback_phase_a(txn, phase_a)
                raise CompensationFailureError(
                    transaction_id=txn.id,
                    unit_id=txn.unit_id,
                    reason=str(exc),
                    rollback_succeeded=rollback_succeeded,
                ) from exc

            logger.info(
                "compensation_completed",
                extra={
                    "action": result.action,
                    "bills_reversed": list(result.bills_reversed),
                    "credit_net_reversal": phase_a.reversal.net_reversal,
                },
            )

            cache_warning = self._refresh_cache(txn, result.bills_reversed)
            if cache_warning:
                warnings.append(cache_warning)

            return CompensationResult(
                transaction_id=result.transaction_id,
                unit_id=result.unit_id,
                action=result.action,
                credit_reversal=result.credit_reversal,
                bill_reversals=result.bill_reversals,
                dues_cleanup=result.dues_cleanup,
                account_reversed=result.account_reversed,
                warnings=tuple(warnings),
            )

    # =========================================================================
    # Phase A: credit reversal
    # =========================================================================

    def _phase_a(self, txn: TransactionRecord) -> _PhaseAState:
        fiscal_year = self._fiscal_year(txn)
        try:
            balance = self._credit.get_balance(txn.unit_id, fiscal_year).current_balance
            removed = self._credit.remove_entries_by_transaction(
                txn.id, unit_id=txn.unit_id, fiscal_year=fiscal_year
            )
            reversal = plan_credit_reversal(balance, [r.entry for r in removed])
            if reversal.has_effect:
                self._credit.set_balance(txn.unit_id, fiscal_year, reversal.new_balance)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.error("compensation_phase_a_failed", exc_info=True)
            raise

        logger.info(
            "compensation_phase_a_completed",
            extra={
                "fiscal_year": fiscal_year,
                "entries_removed": len(removed),
                "previous_balance": reversal.previous_balance,
                "new_balance": reversal.new_balance,
                "net_reversal": reversal.net_reversal,
                "clamped": reversal.clamped,
            },
        )
        return _PhaseAState(
            unit_id=txn.unit_id,
            fiscal_year=fiscal_year,
            reversal=reversal,
            removed=tuple(removed),
        )

    def _rollback_phase_a(self, txn: TransactionRecord, phase_a: _PhaseAState) -> bool:
        """Undo phase A.  Returns False (after logging CRITICAL) if that fails."""
        if not phase_a.reversal.has_effect:
            return True
        try:
            self._credit.restore_entries(
                phase_a.unit_id,
                phase_a.fiscal_year,
                phase_a.removed,
                phase_a.reversal.previous_balance,
            )
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            actual = self._read_balance(phase_a)
            fatal = FatalReconciliationRequiredError(
                unit_id=phase_a.unit_id,
                transaction_id=txn.id,
                expected_balance=phase_a.reversal.previous_balance,
                actual_balance=actual,
            )
            logger.critical(
                "fatal_reconciliation_required",
                extra={
                    "error_code": fatal.code,
                    "fiscal_year": phase_a.fiscal_year,
                    "expected_balance": fatal.expected_balance,
                    "actual_balance": fatal.actual_balance,
                    "removed_entry_ids": list(phase_a.reversal.removed_entry_ids),
                    "rollback_error": str(exc),
                },
            )
            return False

        logger.warning(
            "compensation_phase_a_rolled_back",
            extra={
                "fiscal_year": phase_a.fiscal_year,
                "restored_balance": phase_a.reversal.previous_balance,
                "entries_restored": len(phase_a.removed),
            },
        )
        return True

    def _read_balance(self, phase_a: _PhaseAState) -> int | None:
        try:
            return self._credit.get_balance(phase_a.unit_id, phase_a.fiscal_year).current_balance
        except Exception:
            logger.error("credit_balance_unreadable", exc_info=True)
            return None

    # =========================================================================
    # Phase B: atomic cleanup
    # =========================================================================

    def _phase_b(
        self,
        txn: TransactionRecord,
        phase_a: _PhaseAState,
    ) -> tuple[CompensationResult, list[str]]:
        warnings: list[str] = []

        # Read phase, rows locked for the rest of the transaction.
        bills = self._bills.find_bills_with_transaction(txn.id, lock=True)
        dues_record = None
        if txn.billing_module == BillingModule.HOA.value:
            dues_record = self._dues.get_record(txn.unit_id, self._fiscal_year(txn), lock=True)
            if dues_record is None:
                logger.info(
                    "dues_cleanup_skipped",
                    extra={"fiscal_year": self._fiscal_year(txn), "reason": "no dues record"},
                )

        # Write phase.
        self._transactions.delete(txn.id)

        account_reversed = False
        if txn.account_id:
            account_reversed, warning = self._reverse_account(txn)
            if warning:
                warnings.append(warning)

        reversals = tuple(plan_bill_reversal(bill, txn.id) for bill in bills)
        for reversal in reversals:
            self._bills.apply_reversal(reversal)

        dues_cleanup = None
        if dues_record is not None:
            dues_cleanup = plan_dues_cleanup(dues_record.payments, txn.id)
            if dues_cleanup.has_effect:
                self._dues.save_cleanup(dues_record, dues_cleanup)

        plan = DeletionPlan(
            transaction_id=txn.id,
            bill_reversals=reversals,
            dues_cleanup=dues_cleanup,
        )
        self._transactions.write_audit(
            action=plan.action,
            transaction_id=txn.id,
            unit_id=txn.unit_id,
            note=self._audit_note(txn, phase_a.reversal, plan),
            occurred_at=self._clock.now(),
        )

        self.session.commit()

        return (
            CompensationResult(
                transaction_id=txn.id,
                unit_id=txn.unit_id,
                action=plan.action,
                credit_reversal=phase_a.reversal,
                bill_reversals=reversals,
                dues_cleanup=dues_cleanup,
                account_reversed=account_reversed,
            ),
            warnings,
        )

    def _reverse_account(self, txn: TransactionRecord) -> tuple[bool, str | None]:
        try:
            with self.session.begin_nested():
                self._accounts.adjust(txn.account_id, -txn.amount)
        except Exception as exc:
            failure = BestEffortFailureError("account_reversal", str(exc))
            logger.warning(
                "account_reversal_failed",
                extra={
                    "account_id": txn.account_id,
                    "change": -txn.amount,
                    "error_code": failure.code,
                    "reason": failure.reason,
                },
            )
            return False, str(failure)
        return True, None

    def _refresh_cache(self, txn: TransactionRecord, periods: tuple[str, ...]) -> str | None:
        if self._cache is None or not periods:
            return None
        try:
            self._cache.refresh_periods(txn.unit_id, periods, txn.billing_module)
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

    # =========================================================================
    # Helpers
    # =========================================================================

    def _fiscal_year(self, txn: TransactionRecord) -> int:
        stored = txn.metadata.get("fiscal_year")
        if stored is not None:
            return int(stored)
        return self._calendar.fiscal_year_for(txn.date)

    @staticmethod
    def _audit_note(txn: TransactionRecord, credit: CreditReversal, plan: DeletionPlan) -> str:
        parts = [f"Deleted transaction {txn.id} ({txn.amount} minor units)"]
        if plan.bill_reversals:
            parts.append(f"bills reversed: {', '.join(plan.affected_periods)}")
        dues = plan.dues_cleanup
        if dues is not None and dues.cleared_months:
            parts.append(f"dues months cleared: {', '.join(map(str, dues.cleared_months))}")
        if dues is not None and dues.reduced_months:
            parts.append(f"dues months reduced: {', '.join(map(str, dues.reduced_months))}")
        if credit.has_effect:
            parts.append(f"credit {credit.previous_balance} -> {credit.new_balance}")
        return "; ".join(parts)
