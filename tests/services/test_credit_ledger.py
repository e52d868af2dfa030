"""
Tests for CreditLedgerStore.

Covers:
- Balance reads and signed updates
- Overdraw rejection
- History order and limit
- Explicit balance repair
- Removal and restoration of a transaction's entries
"""

import pytest

from hoa_kernel.domain.credit import CreditEntryType
from hoa_kernel.exceptions import CreditLedgerNotFoundError, InsufficientCreditError
from tests.factories import TEST_NOW, TEST_UNIT_ID


class TestBalanceUpdates:
    """Tests for update_balance and append_entry."""

    def test_missing_ledger_reads_zero(self, credit_ledger):
        balance = credit_ledger.get_balance(TEST_UNIT_ID, 2026)
        assert balance.current_balance == 0
        assert balance.history == ()

    def test_positive_change_adds_credit(self, session, credit_ledger):
        entry = credit_ledger.update_balance(TEST_UNIT_ID, 2026, 600, TEST_NOW, transaction_id="txn-1")
        session.commit()

        assert entry.entry_type == CreditEntryType.CREDIT_ADDED
        assert entry.balance_before == 0
        assert entry.balance_after == 600
        assert entry.id.startswith("credit_")
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 600

    def test_negative_change_uses_credit(self, session, credit_ledger, seed_credit):
        seed_credit(3000)
        entry = credit_ledger.update_balance(TEST_UNIT_ID, 2026, -2000, TEST_NOW, transaction_id="txn-1")
        session.commit()

        assert entry.entry_type == CreditEntryType.CREDIT_USED
        assert entry.amount == 2000
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 1000

    def test_zero_change_writes_nothing(self, credit_ledger):
        assert credit_ledger.update_balance(TEST_UNIT_ID, 2026, 0, TEST_NOW) is None
        assert credit_ledger.history(TEST_UNIT_ID, 2026) == []

    def test_overdraw_rejected(self, credit_ledger, seed_credit):
        seed_credit(500)
        with pytest.raises(InsufficientCreditError) as exc_info:
            credit_ledger.update_balance(TEST_UNIT_ID, 2026, -501, TEST_NOW)
        assert exc_info.value.current_balance == 500
        assert exc_info.value.change == -501

    def test_fiscal_years_are_separate(self, credit_ledger, seed_credit):
        seed_credit(500, fiscal_year=2025)
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 0
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2025).current_balance == 500


class TestHistory:
    """Tests for history reads."""

    def test_newest_first_with_limit(self, session, credit_ledger):
        for amount in (100, 200, 300):
            credit_ledger.update_balance(TEST_UNIT_ID, 2026, amount, TEST_NOW)
        session.commit()

        history = credit_ledger.history(TEST_UNIT_ID, 2026, limit=2)
        assert [e.amount for e in history] == [300, 200]

    def test_balance_projection_in_order(self, session, credit_ledger):
        credit_ledger.update_balance(TEST_UNIT_ID, 2026, 1000, TEST_NOW)
        credit_ledger.update_balance(TEST_UNIT_ID, 2026, -400, TEST_NOW)
        session.commit()

        balance = credit_ledger.get_balance(TEST_UNIT_ID, 2026)
        assert [e.balance_after for e in balance.history] == [1000, 600]
        assert balance.last_entry.entry_type == CreditEntryType.CREDIT_USED


class TestRepair:
    """Tests for explicit balance repair."""

    def test_repair_upward(self, session, credit_ledger, seed_credit):
        seed_credit(500)
        entry = credit_ledger.repair_balance(TEST_UNIT_ID, 2026, 800, TEST_NOW, reason="audit")
        session.commit()

        assert entry.entry_type == CreditEntryType.CREDIT_REPAIR
        assert entry.amount == 300
        assert entry.description == "audit"

    def test_repair_downward(self, credit_ledger, seed_credit):
        seed_credit(500)
        entry = credit_ledger.repair_balance(TEST_UNIT_ID, 2026, 200, TEST_NOW)
        assert entry.entry_type == CreditEntryType.CREDIT_REMOVED
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 200

    def test_repair_noop(self, credit_ledger, seed_credit):
        seed_credit(500)
        assert credit_ledger.repair_balance(TEST_UNIT_ID, 2026, 500, TEST_NOW) is None

    def test_repair_negative_target_rejected(self, credit_ledger):
        with pytest.raises(InsufficientCreditError):
            credit_ledger.repair_balance(TEST_UNIT_ID, 2026, -1, TEST_NOW)


class TestRemoveAndRestore:
    """Tests for the compensation primitives."""

    def test_set_balance_requires_ledger(self, credit_ledger):
        with pytest.raises(CreditLedgerNotFoundError):
            credit_ledger.set_balance(TEST_UNIT_ID, 2026, 100)

    def test_remove_missing_ledger(self, credit_ledger):
        assert credit_ledger.remove_entries_by_transaction("txn-1", TEST_UNIT_ID, 2026) == []

    def test_remove_then_restore(self, session, credit_ledger):
        credit_ledger.update_balance(TEST_UNIT_ID, 2026, 1000, TEST_NOW, transaction_id="txn-0")
        added = credit_ledger.update_balance(TEST_UNIT_ID, 2026, 600, TEST_NOW, transaction_id="txn-1")
        credit_ledger.update_balance(TEST_UNIT_ID, 2026, -100, TEST_NOW, transaction_id="txn-2")
        session.commit()

        removed = credit_ledger.remove_entries_by_transaction("txn-1", TEST_UNIT_ID, 2026)
        credit_ledger.set_balance(TEST_UNIT_ID, 2026, 900)
        session.commit()

        assert [r.entry.id for r in removed] == [added.id]
        assert removed[0].sequence == 2
        balance = credit_ledger.get_balance(TEST_UNIT_ID, 2026)
        assert balance.current_balance == 900
        assert [e.transaction_id for e in balance.history] == ["txn-0", "txn-2"]

        credit_ledger.restore_entries(TEST_UNIT_ID, 2026, removed, 1500)
        session.commit()

        balance = credit_ledger.get_balance(TEST_UNIT_ID, 2026)
        assert balance.current_balance == 1500
        assert [e.transaction_id for e in balance.history] == ["txn-0", "txn-1", "txn-2"]
        assert balance.history[1].id == added.id

    def test_restore_requires_ledger(self, credit_ledger):
        with pytest.raises(CreditLedgerNotFoundError):
            credit_ledger.restore_entries(TEST_UNIT_ID, 2026, [], 0)
