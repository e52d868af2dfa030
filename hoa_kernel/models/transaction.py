"""Transaction, account and audit log ORM models."""

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hoa_kernel.db.base import TrackedBase
from hoa_kernel.domain.dtos import TransactionRecord


class TransactionModel(TrackedBase):
    """
    ORM model for a financial transaction.

    Allocations, the allocation summary and the bill-payment snapshot are
    stored as JSON; they are immutable once written and read back only to
    decide what must be reversed on deletion.
    """

    __tablename__ = "transactions"

    __table_args__ = (
        Index("idx_transactions_unit_date", "unit_id", "txn_date"),
    )

    unit_id: Mapped[str] = mapped_column(String(50), nullable=False)
    amount: Mapped[int] = mapped_column(nullable=False)
    txn_date: Mapped[date] = mapped_column(Date, nullable=False)
    billing_module: Mapped[str] = mapped_column(String(20), default="water")
    allocations: Mapped[list[dict[str, Any]]] = mapped_column(JSON, default=list)
    allocation_summary: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    # "metadata" is reserved by the declarative base
    txn_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, default=dict)
    category_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    category_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    account_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
    description: Mapped[str] = mapped_column(String(4000), default="")
    notes: Mapped[str] = mapped_column(String(4000), default="")
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def to_dto(self) -> TransactionRecord:
        return TransactionRecord(
            id=str(self.id),
            unit_id=self.unit_id,
            amount=self.amount,
            date=self.txn_date,
            allocations=tuple(self.allocations or ()),
            allocation_summary=dict(self.allocation_summary or {}),
            metadata=dict(self.txn_metadata or {}),
            category_id=self.category_id,
            category_name=self.category_name,
            account_id=self.account_id,
            description=self.description,
            notes=self.notes,
            method=self.method,
            reference=self.reference,
            billing_module=self.billing_module,
            created_at=self.created_at,
        )


class AccountModel(TrackedBase):
    """Bank/cash account whose balance tracks recorded transactions."""

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("account_key", name="uq_accounts_account_key"),
    )

    account_key: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), default="")
    balance: Mapped[int] = mapped_column(default=0)


class AuditLogModel(TrackedBase):
    """Audit trail row for payment recording and transaction deletion."""

    __tablename__ = "audit_log"

    __table_args__ = (
        Index("idx_audit_log_transaction_id", "transaction_id"),
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False)
    unit_id: Mapped[str] = mapped_column(String(50), nullable=False)
    note: Mapped[str] = mapped_column(String(4000), default="")
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
