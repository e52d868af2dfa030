"""
Dues record ORM model.

One document per unit per fiscal year with twelve month slots.  Legacy rows
may hold a dict keyed by month index or a short list; the dues ledger store
normalizes on read and always writes exactly twelve slots.
"""

from typing import Any

from sqlalchemy import JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from hoa_kernel.db.base import TrackedBase


class DuesRecordModel(TrackedBase):
    __tablename__ = "dues_records"

    __table_args__ = (
        UniqueConstraint("unit_id", "fiscal_year", name="uq_dues_records_unit_year"),
    )

    unit_id: Mapped[str] = mapped_column(String(50), nullable=False)
    fiscal_year: Mapped[int] = mapped_column(nullable=False)
    scheduled_amount: Mapped[int] = mapped_column(default=0)
    payments: Mapped[Any] = mapped_column(JSON, default=list)
    total_paid: Mapped[int] = mapped_column(default=0)
