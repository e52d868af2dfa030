"""
hoa_services.credit_ledger -- Credit balance ledger store.

Responsibility:
    Per unit, per fiscal year prepaid credit with an append-only history.
    Every balance change appends an entry whose ``balance_after`` becomes
    the new ``current_balance``.

Invariants enforced:
    - The balance never goes negative through ``update_balance``.
    - Entries are removed only by ``remove_entries_by_transaction`` (a
      transaction deletion) and put back only by ``restore_entries`` (the
      rollback of that deletion), with their original keys and sequence.

Failure modes:
    - InsufficientCreditError when a change would overdraw the balance.
    - CreditLedgerNotFoundError from ``set_balance``/``restore_entries``
      when the document does not exist.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from sqlalchemy import select

from hoa_kernel.domain.credit import CreditBalance, CreditEntry, CreditEntryType
from hoa_kernel.exceptions import CreditLedgerNotFoundError, InsufficientCreditError
from hoa_kernel.logging_config import get_logger
from hoa_kernel.models.credit import CreditBalanceModel, CreditEntryModel
from hoa_services.base import BaseStore

logger = get_logger("services.credit_ledger")

DEFAULT_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class RemovedCreditEntry:
    """A deleted history row, kept so a rollback can put it back verbatim."""

    sequence: int
    entry: CreditEntry


class CreditLedgerStore(BaseStore):
    """SQLAlchemy-backed credit balance ledger."""

    def get_balance(self, unit_id: str, fiscal_year: int) -> CreditBalance:
        """Current balance and history; an empty ledger reads as zero."""
        model = self._get_model(unit_id, fiscal_year)
        if model is None:
            return CreditBalance(unit_id=unit_id, fiscal_year=fiscal_year, current_balance=0)
        return model.to_dto()

    def history(
        self,
        unit_id: str,
        fiscal_year: int,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[CreditEntry]:
        """Most recent entries first."""
        model = self._get_model(unit_id, fiscal_year)
        if model is None:
            return []
        stmt = (
            select(CreditEntryModel)
            .where(CreditEntryModel.credit_balance_id == model.id)
            .order_by(CreditEntryModel.sequence.desc())
            .limit(limit)
        )
        return [e.to_dto() for e in self.session.execute(stmt).scalars()]

    def append_entry(
        self,
        unit_id: str,
        fiscal_year: int,
        entry_type: CreditEntryType,
        amount: int,
        timestamp: datetime,
        transaction_id: str | None = None,
        description: str = "",
    ) -> CreditEntry:
        """Append one entry and move the balance by its signed amount."""
        model = self._get_or_create(unit_id, fiscal_year, lock=True)
        before = model.current_balance
        after = before + entry_type.sign * amount
        if after < 0:
            raise InsufficientCreditError(unit_id, before, entry_type.sign * amount)

        entry = CreditEntry(
            id=f"credit_{uuid4().hex}",
            timestamp=timestamp,
            transaction_id=transaction_id,
            entry_type=entry_type,
            amount=amount,
            balance_before=before,
            balance_after=after,
            description=description,
        )
        model.entries.append(self._entry_model(entry, self._next_sequence(model)))
        model.current_balance = after
        self.session.flush()

        logger.info(
            "credit_entry_appended",
            extra={
                "unit_id": unit_id,
                "fiscal_year": fiscal_year,
                "entry_type": entry_type.value,
                "amount": amount,
                "balance_before": before,
                "balance_after": after,
                "transaction_id": transaction_id,
            },
        )
        return entry

    def update_balance(
        self,
        unit_id: str,
        fiscal_year: int,
        change: int,
        timestamp: datetime,
        transaction_id: str | None = None,
        description: str = "",
    ) -> CreditEntry | None:
        """Apply a signed change as ``credit_added`` or ``credit_used``.

        A zero change writes nothing and returns None.
        """
        if change == 0:
            return None
        entry_type = CreditEntryType.CREDIT_ADDED if change > 0 else CreditEntryType.CREDIT_USED
        return self.append_entry(
            unit_id,
            fiscal_year,
            entry_type,
            abs(change),
            timestamp,
            transaction_id=transaction_id,
            description=description,
        )

    def repair_balance(
        self,
        unit_id: str,
        fiscal_year: int,
        target_balance: int,
        timestamp: datetime,
        reason: str = "",
    ) -> CreditEntry | None:
        """Bring the balance to ``target_balance`` with an explicit history entry."""
        current = self.get_balance(unit_id, fiscal_year).current_balance
        if target_balance < 0:
            raise InsufficientCreditError(unit_id, current, target_balance - current)
        delta = target_balance - current
        if delta == 0:
            return None
        entry_type = CreditEntryType.CREDIT_REPAIR if delta > 0 else CreditEntryType.CREDIT_REMOVED
        logger.warning(
            "credit_balance_repaired",
            extra={
                "unit_id": unit_id,
                "fiscal_year": fiscal_year,
                "balance_before": current,
                "balance_after": target_balance,
                "reason": reason,
            },
        )
        return self.append_entry(
            unit_id,
            fiscal_year,
            entry_type,
            abs(delta),
            timestamp,
            description=reason or "Balance repair",
        )

    def set_balance(self, unit_id: str, fiscal_year: int, balance: int) -> None:
        """Overwrite the balance without a history entry (compensation only)."""
        model = self._get_model(unit_id, fiscal_year, lock=True)
        if model is None:
            raise CreditLedgerNotFoundError(unit_id, fiscal_year)
        model.current_balance = balance
        self.session.flush()

    def remove_entries_by_transaction(
        self,
        transaction_id: str,
        unit_id: str,
        fiscal_year: int,
    ) -> list[RemovedCreditEntry]:
        """Delete every history entry carrying ``transaction_id``.

        The balance is left untouched; the caller computes and sets the
        reversed balance.
        """
        model = self._get_model(unit_id, fiscal_year, lock=True)
        if model is None:
            return []
        matched = [e for e in model.entries if e.transaction_id == transaction_id]
        removed = [RemovedCreditEntry(sequence=e.sequence, entry=e.to_dto()) for e in matched]
        for entry_model in matched:
            model.entries.remove(entry_model)
        self.session.flush()
        return removed

    def restore_entries(
        self,
        unit_id: str,
        fiscal_year: int,
        removed: Sequence[RemovedCreditEntry],
        balance: int,
    ) -> None:
        """Put removed entries back at their original positions and reset the balance."""
        model = self._get_model(unit_id, fiscal_year, lock=True)
        if model is None:
            raise CreditLedgerNotFoundError(unit_id, fiscal_year)
        for item in removed:
            model.entries.append(self._entry_model(item.entry, item.sequence))
        model.entries.sort(key=lambda e: e.sequence)
        model.current_balance = balance
        self.session.flush()

    # =========================================================================
    # Internal
    # =========================================================================

    def _get_model(
        self,
        unit_id: str,
        fiscal_year: int,
        lock: bool = False,
    ) -> CreditBalanceModel | None:
        stmt = select(CreditBalanceModel).where(
            CreditBalanceModel.unit_id == unit_id,
            CreditBalanceModel.fiscal_year == fiscal_year,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def _get_or_create(self, unit_id: str, fiscal_year: int, lock: bool = False) -> CreditBalanceModel:
        model = self._get_model(unit_id, fiscal_year, lock=lock)
        if model is None:
            model = CreditBalanceModel(unit_id=unit_id, fiscal_year=fiscal_year, current_balance=0)
            self.session.add(model)
            self.session.flush()
        return model

    @staticmethod
    def _next_sequence(model: CreditBalanceModel) -> int:
        return max((e.sequence for e in model.entries), default=0) + 1

    @staticmethod
    def _entry_model(entry: CreditEntry, sequence: int) -> CreditEntryModel:
        return CreditEntryModel(
            entry_key=entry.id,
            sequence=sequence,
            transaction_id=entry.transaction_id,
            entry_type=entry.entry_type.value,
            amount=entry.amount,
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            description=entry.description,
            occurred_at=entry.timestamp,
        )
