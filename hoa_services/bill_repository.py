"""
hoa_services.bill_repository -- Bill persistence boundary.

Responsibility:
    Read and write bills and their payment entries.  Everything handed to
    the engines is the canonical frozen ``Bill``; everything written back
    goes through the ORM models with status re-derived.

Architecture position:
    Services -- imperative shell over hoa_kernel.models.

Invariants enforced:
    - Unpaid bills are returned oldest first (period key order).
    - ``paid_amount <= total_amount`` after every write.
    - Reads that precede a write in the same unit of work take row locks
      (``SELECT ... FOR UPDATE``).

Failure modes:
    - BillNotFoundError when a (bill, unit, module) triple does not exist.
    - ValidationError when a payment would overpay a bill.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date

from sqlalchemy import select

from hoa_engines.compensation import BillReversal
from hoa_kernel.domain.billing import Bill, BillingModule, BillStatus, PaymentEntry
from hoa_kernel.domain.fiscal import parse_period_key
from hoa_kernel.exceptions import BillNotFoundError, ValidationError
from hoa_kernel.logging_config import get_logger
from hoa_kernel.models.bill import BillModel, BillPaymentModel
from hoa_services.base import BaseStore

logger = get_logger("services.bill_repository")


@dataclass(frozen=True)
class PaymentHistoryItem:
    bill_id: str
    billing_module: BillingModule
    entry: PaymentEntry


@dataclass(frozen=True)
class UnpaidSummary:
    unit_id: str
    bill_count: int
    total_unpaid: int
    unpaid_base: int
    unpaid_penalty: int
    oldest_period: str | None


class BillRepository(BaseStore):
    """SQLAlchemy-backed bill repository."""

    # =========================================================================
    # Reads
    # =========================================================================

    def list_unpaid_bills(
        self,
        unit_id: str,
        fiscal_year: int | None = None,
        billing_module: BillingModule | str | None = None,
    ) -> list[Bill]:
        """Bills with anything left to pay, oldest first."""
        stmt = (
            select(BillModel)
            .where(BillModel.unit_id == unit_id)
            .where(BillModel.status != BillStatus.PAID.value)
            .order_by(BillModel.period_key)
        )
        if billing_module is not None:
            stmt = stmt.where(BillModel.billing_module == BillingModule(billing_module).value)
        if fiscal_year is not None:
            stmt = stmt.where(BillModel.period_key.like(f"{fiscal_year}-%"))

        bills = [m.to_dto() for m in self.session.execute(stmt).scalars()]
        return [b for b in bills if b.unpaid_total > 0]

    def get_bill(
        self,
        bill_id: str,
        unit_id: str,
        billing_module: BillingModule | str = BillingModule.WATER,
    ) -> Bill:
        return self._get_model(bill_id, unit_id, billing_module).to_dto()

    def find_bills_with_transaction(self, transaction_id: str, lock: bool = True) -> list[Bill]:
        """Bills holding a payment entry for ``transaction_id``."""
        paid_by = select(BillPaymentModel.bill_id).where(
            BillPaymentModel.transaction_id == transaction_id
        )
        stmt = (
            select(BillModel)
            .where(BillModel.id.in_(paid_by))
            .order_by(BillModel.period_key)
        )
        if lock:
            stmt = stmt.with_for_update()
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def payment_history(self, unit_id: str) -> list[PaymentHistoryItem]:
        """Every payment entry on the unit's bills, newest first."""
        stmt = (
            select(BillPaymentModel, BillModel)
            .join(BillModel, BillPaymentModel.bill_id == BillModel.id)
            .where(BillModel.unit_id == unit_id)
            .order_by(
                BillPaymentModel.payment_date.desc(),
                BillPaymentModel.recorded_at.desc(),
                BillModel.period_key.desc(),
            )
        )
        return [
            PaymentHistoryItem(
                bill_id=bill.period_key,
                billing_module=BillingModule(bill.billing_module),
                entry=payment.to_dto(),
            )
            for payment, bill in self.session.execute(stmt).all()
        ]

    def unpaid_summary(
        self,
        unit_id: str,
        billing_module: BillingModule | str | None = None,
    ) -> UnpaidSummary:
        bills = self.list_unpaid_bills(unit_id, billing_module=billing_module)
        return UnpaidSummary(
            unit_id=unit_id,
            bill_count=len(bills),
            total_unpaid=sum(b.unpaid_total for b in bills),
            unpaid_base=sum(b.unpaid_base for b in bills),
            unpaid_penalty=sum(b.unpaid_penalty for b in bills),
            oldest_period=bills[0].bill_id if bills else None,
        )

    # =========================================================================
    # Writes
    # =========================================================================

    def create_bill(
        self,
        unit_id: str,
        period_key: str,
        base_charge: int,
        due_date: date,
        penalty_amount: int = 0,
        billing_module: BillingModule | str = BillingModule.WATER,
    ) -> Bill:
        """Insert a new bill.  Bill generation itself is done by the billing job."""
        parse_period_key(period_key)
        model = BillModel(
            unit_id=unit_id,
            period_key=period_key,
            billing_module=BillingModule(billing_module).value,
            base_charge=base_charge,
            penalty_amount=penalty_amount,
            base_paid=0,
            penalty_paid=0,
            due_date=due_date,
        )
        model.refresh_status()
        self.session.add(model)
        self.session.flush()
        return model.to_dto()

    def update_bill_payment(
        self,
        bill_id: str,
        unit_id: str,
        entry: PaymentEntry,
        billing_module: BillingModule | str = BillingModule.WATER,
    ) -> Bill:
        """Append ``entry`` to the bill and roll its amounts into the paid totals."""
        model = self._get_model(bill_id, unit_id, billing_module, lock=True)

        if model.paid_amount + entry.amount > model.total_amount:
            raise ValidationError(
                f"Payment {entry.amount} overpays bill {bill_id} for unit {unit_id} "
                f"(paid {model.paid_amount} of {model.total_amount})",
                field="amount",
            )

        sequence = max((p.sequence for p in model.payments), default=0) + 1
        model.payments.append(BillPaymentModel.from_dto(entry, sequence))
        model.base_paid += entry.base_charge_paid
        model.penalty_paid += entry.penalty_paid
        previous_status = model.status
        model.refresh_status()
        self.session.flush()

        logger.info(
            "bill_payment_applied",
            extra={
                "unit_id": unit_id,
                "bill_id": bill_id,
                "transaction_id": entry.transaction_id,
                "amount": entry.amount,
                "previous_status": previous_status,
                "new_status": model.status,
            },
        )
        return model.to_dto()

    def update_bill_penalty(
        self,
        bill_id: str,
        unit_id: str,
        penalty_amount: int,
        as_of: date,
        billing_module: BillingModule | str = BillingModule.WATER,
    ) -> Bill:
        model = self._get_model(bill_id, unit_id, billing_module, lock=True)
        if penalty_amount < model.penalty_paid:
            raise ValidationError(
                f"Penalty {penalty_amount} is below the {model.penalty_paid} already paid "
                f"on bill {bill_id}",
                field="penalty_amount",
            )
        model.penalty_amount = penalty_amount
        model.last_penalty_update = as_of
        model.refresh_status()
        self.session.flush()
        return model.to_dto()

    def apply_reversal(self, reversal: BillReversal) -> Bill:
        """Persist a planned reversal: drop the matched entries and reset totals."""
        bill = reversal.bill
        model = self._get_model(bill.bill_id, bill.unit_id, bill.billing_module, lock=True)
        removed_ids = {p.transaction_id for p in reversal.removed_entries}
        for payment in [p for p in model.payments if p.transaction_id in removed_ids]:
            model.payments.remove(payment)
        model.base_paid = bill.base_paid
        model.penalty_paid = bill.penalty_paid
        model.refresh_status()
        self.session.flush()
        return model.to_dto()

    # =========================================================================
    # Internal
    # =========================================================================

    def _get_model(
        self,
        bill_id: str,
        unit_id: str,
        billing_module: BillingModule | str,
        lock: bool = False,
    ) -> BillModel:
        stmt = select(BillModel).where(
            BillModel.unit_id == unit_id,
            BillModel.period_key == bill_id,
            BillModel.billing_module == BillingModule(billing_module).value,
        )
        if lock:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise BillNotFoundError(bill_id, unit_id)
        return model
