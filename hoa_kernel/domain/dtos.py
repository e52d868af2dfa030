"""
Transaction DTOs exchanged with the transaction store.

Allocations are stored on the transaction as plain dicts (JSON) so the
store has no dependency on the engines package.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any


@dataclass(frozen=True)
class TransactionData:
    """Everything needed to create a transaction."""

    unit_id: str
    amount: int
    date: date
    allocations: tuple[dict[str, Any], ...] = ()
    allocation_summary: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    category_id: str | None = None
    category_name: str | None = None
    account_id: str | None = None
    description: str = ""
    notes: str = ""
    method: str | None = None
    reference: str | None = None
    billing_module: str = "water"


@dataclass(frozen=True)
class TransactionRecord(TransactionData):
    """A stored transaction."""

    id: str = ""
    created_at: datetime | None = None
