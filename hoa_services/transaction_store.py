"""Transaction store: create, read and delete transactions."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import select

from hoa_kernel.domain.dtos import TransactionData, TransactionRecord
from hoa_kernel.exceptions import TransactionNotFoundError
from hoa_kernel.logging_config import get_logger
from hoa_kernel.models.transaction import AuditLogModel, TransactionModel
from hoa_services.base import BaseStore

logger = get_logger("services.transaction_store")


class TransactionStore(BaseStore):
    """SQLAlchemy-backed transaction store."""

    def create(self, data: TransactionData) -> TransactionRecord:
        model = TransactionModel(
            unit_id=data.unit_id,
            amount=data.amount,
            txn_date=data.date,
            billing_module=data.billing_module,
            allocations=[dict(a) for a in data.allocations],
            allocation_summary=dict(data.allocation_summary),
            txn_metadata=dict(data.metadata),
            category_id=data.category_id,
            category_name=data.category_name,
            account_id=data.account_id,
            description=data.description,
            notes=data.notes,
            method=data.method,
            reference=data.reference,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "transaction_created",
            extra={
                "transaction_id": str(model.id),
                "unit_id": data.unit_id,
                "amount": data.amount,
                "allocation_count": len(data.allocations),
            },
        )
        return model.to_dto()

    def get(self, transaction_id: str, lock: bool = False) -> TransactionRecord:
        return self._get_model(transaction_id, lock=lock).to_dto()

    def exists(self, transaction_id: str) -> bool:
        try:
            self._get_model(transaction_id)
        except TransactionNotFoundError:
            return False
        return True

    def delete(self, transaction_id: str) -> None:
        model = self._get_model(transaction_id, lock=True)
        self.session.delete(model)
        self.session.flush()

    def write_audit(
        self,
        action: str,
        transaction_id: str,
        unit_id: str,
        note: str,
        occurred_at: datetime,
    ) -> None:
        self.session.add(
            AuditLogModel(
                action=action,
                transaction_id=transaction_id,
                unit_id=unit_id,
                note=note,
                occurred_at=occurred_at,
            )
        )
        self.session.flush()

    def audit_entries(self, transaction_id: str) -> list[AuditLogModel]:
        stmt = (
            select(AuditLogModel)
            .where(AuditLogModel.transaction_id == transaction_id)
            .order_by(AuditLogModel.occurred_at)
        )
        return list(self.session.execute(stmt).scalars())

    def _get_model(self, transaction_id: str, lock: bool = False) -> TransactionModel:
        try:
            key = UUID(str(transaction_id))
        except ValueError:
            raise TransactionNotFoundError(transaction_id) from None
        stmt = select(TransactionModel).where(TransactionModel.id == key)
        if lock:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise TransactionNotFoundError(transaction_id)
        return model
