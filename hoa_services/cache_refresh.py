"""
hoa_services.cache_refresh -- Per-period bill summary cache.

Responsibility:
    Holds read-side summaries of each billing period (billed, paid, unpaid,
    status) keyed by (unit, module, period) so display code does not
    rescan bills.  Payment recording and transaction deletion refresh the
    periods they touched.

Failure modes:
    Refresh errors propagate to the caller, which treats refresh as
    best-effort (logged as BestEffortFailureError, never raised).  A stale
    entry is corrected by the next refresh or by ``clear``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from hoa_kernel.domain.billing import BillingModule
from hoa_kernel.domain.clock import Clock, SystemClock
from hoa_kernel.exceptions import BillNotFoundError
from hoa_kernel.logging_config import get_logger
from hoa_services.bill_repository import BillRepository

logger = get_logger("services.cache_refresh")

CacheKey = tuple[str, str, str]


@dataclass(frozen=True)
class PeriodSummary:
    unit_id: str
    billing_module: str
    period_key: str
    total_amount: int
    paid_amount: int
    unpaid_amount: int
    status: str
    refreshed_at: datetime


class PeriodSummaryCache:
    """In-process cache of period summaries."""

    def __init__(self, bills: BillRepository, clock: Clock | None = None):
        self._bills = bills
        self._clock = clock or SystemClock()
        self._entries: dict[CacheKey, PeriodSummary] = {}

    def get(
        self,
        unit_id: str,
        period_key: str,
        billing_module: BillingModule | str = BillingModule.WATER,
    ) -> PeriodSummary | None:
        return self._entries.get((unit_id, BillingModule(billing_module).value, period_key))

    def __len__(self) -> int:
        return len(self._entries)

    def refresh_periods(
        self,
        unit_id: str,
        period_keys: Iterable[str],
        billing_module: BillingModule | str = BillingModule.WATER,
    ) -> list[PeriodSummary]:
        """Recompute the summaries of ``period_keys`` from storage."""
        module = BillingModule(billing_module).value
        refreshed: list[PeriodSummary] = []
        for key in sorted(set(period_keys)):
            try:
                bill = self._bills.get_bill(key, unit_id, module)
            except BillNotFoundError:
                self._entries.pop((unit_id, module, key), None)
                continue
            summary = PeriodSummary(
                unit_id=unit_id,
                billing_module=module,
                period_key=key,
                total_amount=bill.total_amount,
                paid_amount=bill.paid_amount,
                unpaid_amount=bill.unpaid_total,
                status=bill.status.value,
                refreshed_at=self._clock.now(),
            )
            self._entries[(unit_id, module, key)] = summary
            refreshed.append(summary)

        logger.debug(
            "period_cache_refreshed",
            extra={"unit_id": unit_id, "billing_module": module, "periods": len(refreshed)},
        )
        return refreshed

    def clear(self, unit_id: str | None = None) -> int:
        """Drop all entries (or one unit's).  Returns how many were dropped."""
        if unit_id is None:
            dropped = len(self._entries)
            self._entries.clear()
        else:
            keys = [k for k in self._entries if k[0] == unit_id]
            for k in keys:
                del self._entries[k]
            dropped = len(keys)
        logger.info("period_cache_cleared", extra={"unit_id": unit_id, "dropped": dropped})
        return dropped
