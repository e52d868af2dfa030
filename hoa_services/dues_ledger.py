"""
hoa_services.dues_ledger -- HOA dues month-slot store.

One record per unit per fiscal year with twelve month slots.  Stored slot
shapes vary (dict keyed by month, short lists); they are normalized to
exactly twelve slots on every read and written back in that shape.

A slot is ``None`` when empty, otherwise a dict::

    {"paid": True, "amount": 15000, "date": "2025-07-05",
     "reference": "<latest transaction id>", "notes": "...",
     "contributions": [{"transaction_id": "...", "amount": 15000,
                        "date": "2025-07-05"}]}

Deleting a transaction removes its contribution and leaves the rest.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from sqlalchemy import select

from hoa_engines.compensation import (
    DuesCleanup,
    normalize_month_slots,
    slot_contributions,
    slots_total,
)
from hoa_kernel.exceptions import DuesRecordNotFoundError, InvalidInputError
from hoa_kernel.logging_config import get_logger
from hoa_kernel.models.dues import DuesRecordModel
from hoa_services.base import BaseStore

logger = get_logger("services.dues_ledger")


class DuesLedgerStore(BaseStore):

    def get_record(self, unit_id: str, fiscal_year: int, lock: bool = False) -> DuesRecordModel | None:
        stmt = select(DuesRecordModel).where(
            DuesRecordModel.unit_id == unit_id,
            DuesRecordModel.fiscal_year == fiscal_year,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def slots(self, unit_id: str, fiscal_year: int) -> list[dict[str, Any] | None]:
        record = self.get_record(unit_id, fiscal_year)
        if record is None:
            raise DuesRecordNotFoundError(unit_id, fiscal_year)
        return normalize_month_slots(record.payments)

    def create_record(
        self,
        unit_id: str,
        fiscal_year: int,
        scheduled_amount: int = 0,
        payments: Any = None,
    ) -> DuesRecordModel:
        slots = normalize_month_slots(payments or [])
        record = DuesRecordModel(
            unit_id=unit_id,
            fiscal_year=fiscal_year,
            scheduled_amount=scheduled_amount,
            payments=slots,
            total_paid=slots_total(slots),
        )
        self.session.add(record)
        self.session.flush()
        return record

    def mark_month(
        self,
        unit_id: str,
        fiscal_year: int,
        fiscal_month: int,
        amount: int,
        paid_on: date,
        transaction_id: str,
        notes: str = "",
    ) -> dict[str, Any]:
        """Add ``transaction_id``'s ``amount`` to a month slot."""
        if not 0 <= fiscal_month <= 11:
            raise InvalidInputError(
                f"Fiscal month must be 0-11, got {fiscal_month}",
                value=fiscal_month,
                field="fiscal_month",
            )
        record = self.get_record(unit_id, fiscal_year, lock=True)
        if record is None:
            record = self.create_record(unit_id, fiscal_year)

        slots = normalize_month_slots(record.payments)
        existing = slots[fiscal_month] or {}
        contributions = slot_contributions(existing)
        if contributions is None:
            contributions = []
            if int(existing.get("amount", 0) or 0):
                contributions.append(
                    {
                        "transaction_id": existing.get("reference"),
                        "amount": int(existing["amount"]),
                        "date": existing.get("date"),
                    }
                )
        contributions.append(
            {"transaction_id": transaction_id, "amount": amount, "date": paid_on.isoformat()}
        )
        new_amount = sum(int(c.get("amount", 0) or 0) for c in contributions)
        slots[fiscal_month] = {
            **existing,
            "paid": new_amount > 0,
            "amount": new_amount,
            "date": paid_on.isoformat(),
            "reference": transaction_id,
            "notes": notes or f"Payment recorded in Transaction ID: {transaction_id}",
            "contributions": contributions,
        }
        self._write(record, slots)
        return slots[fiscal_month]

    def save_cleanup(self, record: DuesRecordModel, cleanup: DuesCleanup) -> None:
        self._write(record, list(cleanup.slots))
        logger.info(
            "dues_slots_cleared",
            extra={
                "unit_id": record.unit_id,
                "fiscal_year": record.fiscal_year,
                "cleared_months": list(cleanup.cleared_months),
                "reduced_months": list(cleanup.reduced_months),
                "amount_cleared": cleanup.amount_cleared,
                "total_paid": cleanup.total_paid,
            },
        )

    def _write(self, record: DuesRecordModel, slots: list[dict[str, Any] | None]) -> None:
        # JSON columns are not mutation-tracked; assign a new list.
        record.payments = [dict(s) if s else None for s in slots]
        record.total_paid = slots_total(slots)
        self.session.flush()
