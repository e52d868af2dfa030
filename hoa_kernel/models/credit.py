"""
Credit balance ORM models.

``credit_entries`` is the append-only replay log.  Rows are deleted only
when the originating transaction is deleted; ``sequence`` keeps replay
order stable when such rows are restored by a compensation rollback.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hoa_kernel.db.base import TrackedBase
from hoa_kernel.domain.credit import CreditBalance, CreditEntry, CreditEntryType


class CreditBalanceModel(TrackedBase):
    """Per unit, per fiscal year credit balance document."""

    __tablename__ = "credit_balances"

    __table_args__ = (
        UniqueConstraint("unit_id", "fiscal_year", name="uq_credit_balances_unit_year"),
    )

    unit_id: Mapped[str] = mapped_column(String(50), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(nullable=False)
    current_balance: Mapped[int] = mapped_column(default=0)

    entries: Mapped[list["CreditEntryModel"]] = relationship(
        back_populates="credit_balance",
        cascade="all, delete-orphan",
        order_by="CreditEntryModel.sequence",
        lazy="selectin",
    )

    def to_dto(self) -> CreditBalance:
        return CreditBalance(
            unit_id=self.unit_id,
            fiscal_year=self.fiscal_year,
            current_balance=self.current_balance,
            history=tuple(e.to_dto() for e in self.entries),
        )


class CreditEntryModel(TrackedBase):
    """One credit history entry."""

    __tablename__ = "credit_entries"

    __table_args__ = (
        UniqueConstraint("entry_key", name="uq_credit_entries_entry_key"),
        Index("idx_credit_entries_transaction_id", "transaction_id"),
    )

    credit_balance_id: Mapped[UUID] = mapped_column(
        ForeignKey("credit_balances.id"), nullable=False
    )
    entry_key: Mapped[str] = mapped_column(String(64), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    balance_before: Mapped[int] = mapped_column(nullable=False)
    balance_after: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(4000), default="")
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    credit_balance: Mapped[CreditBalanceModel] = relationship(back_populates="entries")

    def to_dto(self) -> CreditEntry:
        return CreditEntry(
            id=self.entry_key,
            timestamp=self.occurred_at,
            transaction_id=self.transaction_id,
            entry_type=CreditEntryType(self.entry_type),
            amount=self.amount,
            balance_before=self.balance_before,
            balance_after=self.balance_after,
            description=self.description,
        )
