"""
Bill ORM Models (``hoa_kernel.models.bill``).

Responsibility
--------------
Persistence for bills and their append-only payment entries.  Maps to the
canonical ``Bill``/``PaymentEntry`` frozen dataclasses.

Invariants enforced
-------------------
* One bill per (unit, period, billing module) -- uq_bills_unit_period_module.
* Payment entries are ordered by ``sequence`` and indexed by
  ``transaction_id`` so deletion can find them without a full scan.
* ``status`` is persisted for querying but always rewritten from
  ``derive_status`` whenever the paid columns change.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_kernel.db.base import TrackedBase
from hoa_kernel.domain.billing import (
    Bill,
    BillingModule,
    PaymentEntry,
    derive_status,
)


class BillModel(TrackedBase):
    """
    ORM model for a unit's bill in one billing period.

    Guarantees:
        - Monetary fields are integer minor units.
        - payments relationship is loaded eagerly (selectin) in sequence order.
    """

    __tablename__ = "bills"

    __table_args__ = (
        UniqueConstraint(
            "unit_id", "period_key", "billing_module",
            name="uq_bills_unit_period_module",
        ),
        Index("idx_bills_unit_status", "unit_id", "status"),
    )

    unit_id: Mapped[str] = mapped_column(String(50), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    billing_module: Mapped[str] = mapped_column(String(20), default=BillingModule.WATER.value)
    base_charge: Mapped[int] = mapped_column(default=0)
    penalty_amount: Mapped[int] = mapped_column(default=0)
    base_paid: Mapped[int] = mapped_column(default=0)
    penalty_paid: Mapped[int] = mapped_column(default=0)
    status: Mapped[str] = mapped_column(String(20), default="unpaid")
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_penalty_update: Mapped[date | None] = mapped_column(Date, nullable=True)

    payments: Mapped[list["BillPaymentModel"]] = relationship(
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillPaymentModel.sequence",
        lazy="selectin",
    )

    @property
    def total_amount(self) -> int:
        return self.base_charge + self.penalty_amount

    @property
    def paid_amount(self) -> int:
        return self.base_paid + self.penalty_paid

    def refresh_status(self) -> None:
        self.status = derive_status(self.paid_amount, self.total_amount).value

    def to_dto(self) -> Bill:
        """Convert ORM model to the canonical frozen Bill."""
        return Bill(
            bill_id=self.period_key,
            unit_id=self.unit_id,
            base_charge=self.base_charge,
            penalty_amount=self.penalty_amount,
            due_date=self.due_date,
            base_paid=self.base_paid,
            penalty_paid=self.penalty_paid,
            payments=tuple(p.to_dto() for p in self.payments),
            billing_module=BillingModule(self.billing_module),
            last_penalty_update=self.last_penalty_update,
        )

    def __repr__(self) -> str:
        return f"<BillModel {self.unit_id}/{self.period_key} {self.status}>"


class BillPaymentModel(TrackedBase):
    """ORM model for one payment entry on a bill."""

    __tablename__ = "bill_payments"

    __table_args__ = (
        Index("idx_bill_payments_transaction_id", "transaction_id"),
    )

    bill_id: Mapped[UUID] = mapped_column(ForeignKey("bills.id"), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    base_charge_paid: Mapped[int] = mapped_column(default=0)
    penalty_paid: Mapped[int] = mapped_column(default=0)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    bill: Mapped[BillModel] = relationship(back_populates="payments")

    def to_dto(self) -> PaymentEntry:
        return PaymentEntry(
            amount=self.amount,
            base_charge_paid=self.base_charge_paid,
            penalty_paid=self.penalty_paid,
            date=self.payment_date,
            transaction_id=self.transaction_id,
            recorded_at=self.recorded_at,
            method=self.method,
            reference=self.reference,
        )

    @classmethod
    def from_dto(cls, dto: PaymentEntry, sequence: int) -> "BillPaymentModel":
        return cls(
            sequence=sequence,
            transaction_id=dto.transaction_id,
            amount=dto.amount,
            base_charge_paid=dto.base_charge_paid,
            penalty_paid=dto.penalty_paid,
            payment_date=dto.date,
            recorded_at=dto.recorded_at,
            method=dto.method,
            reference=dto.reference,
        )
