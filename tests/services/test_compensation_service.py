"""
Tests for CompensationService.

Covers:
- Deleting a payment restores bills, credit, account balance and dues slots
- Audit actions per cleanup kind
- Credit reversal clamping
- Phase B failure rolls phase A back
- Failed rollback is reported for manual reconciliation
- Unknown transactions
"""

from datetime import date
from uuid import uuid4

import pytest

from hoa_kernel.domain.billing import BillingModule, BillStatus
from hoa_kernel.exceptions import CompensationFailureError, TransactionNotFoundError
from hoa_kernel.models.transaction import AccountModel
from hoa_services.payment_service import PaymentRequest
from tests.factories import TEST_ACCOUNT_ID, TEST_UNIT_ID


@pytest.fixture
def two_bills(create_bill):
    create_bill("2026-00", 4400, penalty_amount=600)
    create_bill("2026-01", 4400, due_date=date(2025, 8, 10))


class TestDeleteTransaction:
    """Tests for successful deletions."""

    def test_round_trip(
        self,
        payment_service,
        compensation_service,
        bill_repository,
        credit_ledger,
        transaction_store,
        account_adapter,
        two_bills,
    ):
        recorded = payment_service.record_payment(
            PaymentRequest(TEST_UNIT_ID, "100.00", account_id=TEST_ACCOUNT_ID)
        )

        result = compensation_service.delete_transaction(recorded.transaction_id)

        assert result.action == "delete_with_water_cleanup"
        assert result.bills_reversed == ("2026-00", "2026-01")
        assert result.account_reversed
        assert result.warnings == ()
        assert not transaction_store.exists(recorded.transaction_id)

        for bill_id in ("2026-00", "2026-01"):
            bill = bill_repository.get_bill(bill_id, TEST_UNIT_ID)
            assert bill.status == BillStatus.UNPAID
            assert bill.payments == ()

        balance = credit_ledger.get_balance(TEST_UNIT_ID, 2026)
        assert balance.current_balance == 0
        assert balance.history == ()
        assert account_adapter.balance(TEST_ACCOUNT_ID) == 0

        (audit,) = transaction_store.audit_entries(recorded.transaction_id)
        assert audit.action == "delete_with_water_cleanup"
        assert "2026-00, 2026-01" in audit.note

    def test_account_database_error_keeps_deletion(
        self,
        session,
        payment_service,
        compensation_service,
        bill_repository,
        transaction_store,
        account_adapter,
        monkeypatch,
        two_bills,
    ):
        recorded = payment_service.record_payment(
            PaymentRequest(TEST_UNIT_ID, "100.00", account_id=TEST_ACCOUNT_ID)
        )

        def duplicate_account(account_id, signed_amount):
            session.add(AccountModel(account_key=account_id, name="Duplicate", balance=0))
            session.flush()

        monkeypatch.setattr(account_adapter, "adjust", duplicate_account)

        result = compensation_service.delete_transaction(recorded.transaction_id)
        session.rollback()

        assert not result.account_reversed
        assert "account_reversal" in result.warnings[0]
        assert not transaction_store.exists(recorded.transaction_id)
        assert bill_repository.get_bill("2026-00", TEST_UNIT_ID).status == BillStatus.UNPAID
        assert account_adapter.balance(TEST_ACCOUNT_ID) == 10000

    def test_restores_consumed_credit(
        self, payment_service, compensation_service, credit_ledger, seed_credit, create_bill
    ):
        create_bill("2026-00", 4400, penalty_amount=600)
        seed_credit(3000)
        recorded = payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "30.00"))
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 1000

        result = compensation_service.delete_transaction(recorded.transaction_id)

        assert result.credit_reversal.net_reversal == 2000
        balance = credit_ledger.get_balance(TEST_UNIT_ID, 2026)
        assert balance.current_balance == 3000
        assert [e.description for e in balance.history] == ["Opening balance"]

    def test_backdated_round_trip_on_partial_bill(
        self, payment_service, compensation_service, bill_repository, credit_ledger, seed_credit, create_bill
    ):
        create_bill("2026-00", 10000, due_date=date(2025, 7, 10))
        payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "30.00"))
        seed_credit(1000)
        before = bill_repository.get_bill("2026-00", TEST_UNIT_ID)
        assert before.status == BillStatus.PARTIAL

        recorded = payment_service.record_payment(
            PaymentRequest(TEST_UNIT_ID, "20.00", as_of_date=date(2025, 8, 25))
        )
        assert recorded.distribution.backdated
        assert recorded.distribution.credit_used == 1000
        assert bill_repository.get_bill("2026-00", TEST_UNIT_ID).penalty_amount == 500

        compensation_service.delete_transaction(recorded.transaction_id)

        after = bill_repository.get_bill("2026-00", TEST_UNIT_ID)
        assert after.base_paid == before.base_paid
        assert after.penalty_paid == before.penalty_paid
        assert after.paid_amount == before.paid_amount
        assert after.status == before.status
        assert after.payments == before.payments
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 1000

    def test_other_payments_untouched(
        self, payment_service, compensation_service, bill_repository, two_bills
    ):
        first = payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "10.00"))
        second = payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "40.00"))

        compensation_service.delete_transaction(second.transaction_id)

        bill = bill_repository.get_bill("2026-00", TEST_UNIT_ID)
        assert bill.paid_amount == 1000
        assert bill.status == BillStatus.PARTIAL
        assert [p.transaction_id for p in bill.payments] == [first.transaction_id]

    def test_credit_only_transaction(self, payment_service, compensation_service, credit_ledger):
        recorded = payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "25.00"))

        result = compensation_service.delete_transaction(recorded.transaction_id)

        assert result.action == "delete"
        assert result.bill_reversals == ()
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 0

    def test_hoa_dues_cleanup(
        self, payment_service, compensation_service, dues_ledger, transaction_store, create_bill
    ):
        create_bill("2026-02", 15000, billing_module=BillingModule.HOA)
        create_bill("2026-03", 15000, billing_module=BillingModule.HOA)
        kept = payment_service.record_payment(
            PaymentRequest(TEST_UNIT_ID, "150.00", billing_module="hoa")
        )
        removed = payment_service.record_payment(
            PaymentRequest(TEST_UNIT_ID, "150.00", billing_module="hoa")
        )

        result = compensation_service.delete_transaction(removed.transaction_id)

        assert result.action == "delete_with_multi_cleanup"
        assert result.dues_cleanup.cleared_months == (3,)
        slots = dues_ledger.slots(TEST_UNIT_ID, 2026)
        assert slots[2]["reference"] == kept.transaction_id
        assert slots[3] is None
        assert dues_ledger.get_record(TEST_UNIT_ID, 2026).total_paid == 15000
        (audit,) = transaction_store.audit_entries(removed.transaction_id)
        assert "dues months cleared: 3" in audit.note

    def test_hoa_earlier_payment_deleted(
        self, payment_service, compensation_service, dues_ledger, transaction_store, create_bill
    ):
        create_bill("2026-02", 15000, billing_module=BillingModule.HOA)
        first = payment_service.record_payment(
            PaymentRequest(TEST_UNIT_ID, "50.00", billing_module="hoa")
        )
        second = payment_service.record_payment(
            PaymentRequest(TEST_UNIT_ID, "100.00", billing_module="hoa")
        )

        result = compensation_service.delete_transaction(first.transaction_id)

        assert result.dues_cleanup.cleared_months == ()
        assert result.dues_cleanup.reduced_months == (2,)
        slot = dues_ledger.slots(TEST_UNIT_ID, 2026)[2]
        assert slot["amount"] == 10000
        assert slot["reference"] == second.transaction_id
        assert dues_ledger.get_record(TEST_UNIT_ID, 2026).total_paid == 10000
        (audit,) = transaction_store.audit_entries(first.transaction_id)
        assert "dues months reduced: 2" in audit.note

    def test_clamped_credit_reversal(
        self, payment_service, compensation_service, credit_ledger, create_bill
    ):
        advance = payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "25.00"))
        create_bill("2026-02", 4400, due_date=date(2025, 9, 10))
        payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "20.00"))
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 100

        result = compensation_service.delete_transaction(advance.transaction_id)

        assert result.credit_reversal.clamped
        assert result.credit_reversal.new_balance == 0
        assert credit_ledger.get_balance(TEST_UNIT_ID, 2026).current_balance == 0

    def test_cache_refreshed(self, payment_service, compensation_service, period_cache, two_bills):
        recorded = payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "50.00"))
        assert period_cache.get(TEST_UNIT_ID, "2026-00").status == "paid"

        compensation_service.delete_transaction(recorded.transaction_id)

        assert period_cache.get(TEST_UNIT_ID, "2026-00").status == "unpaid"

    def test_unknown_transaction(self, compensation_service):
        with pytest.raises(TransactionNotFoundError):
            compensation_service.delete_transaction(str(uuid4()))

    def test_malformed_transaction_id(self, compensation_service):
        with pytest.raises(TransactionNotFoundError):
            compensation_service.delete_transaction("not-a-transaction")


class TestCompensationFailure:
    """Tests for phase B failures and phase A rollback."""

    @staticmethod
    def _fail(*args, **kwargs):
        raise RuntimeError("bill write failed")

    def test_phase_a_rolled_back(
        self,
        payment_service,
        compensation_service,
        bill_repository,
        credit_ledger,
        transaction_store,
        account_adapter,
        captured_logs,
        monkeypatch,
        two_bills,
    ):
        recorded = payment_service.record_payment(
            PaymentRequest(TEST_UNIT_ID, "100.00", account_id=TEST_ACCOUNT_ID)
        )
        monkeypatch.setattr(bill_repository, "apply_reversal", self._fail)

        with pytest.raises(CompensationFailureError) as exc_info:
            compensation_service.delete_transaction(recorded.transaction_id)

        error = exc_info.value
        assert error.rollback_succeeded
        assert isinstance(error.__cause__, RuntimeError)
        assert error.transaction_id == recorded.transaction_id

        assert transaction_store.exists(recorded.transaction_id)
        assert transaction_store.audit_entries(recorded.transaction_id) == []
        assert account_adapter.balance(TEST_ACCOUNT_ID) == 10000
        assert bill_repository.get_bill("2026-00", TEST_UNIT_ID).status == BillStatus.PAID

        balance = credit_ledger.get_balance(TEST_UNIT_ID, 2026)
        assert balance.current_balance == 600
        assert [e.transaction_id for e in balance.history] == [recorded.transaction_id]

        messages = [r["message"] for r in captured_logs()]
        assert "compensation_phase_b_failed" in messages
        assert "compensation_phase_a_rolled_back" in messages

    def test_failure_without_credit_effect(
        self, payment_service, compensation_service, bill_repository, monkeypatch, two_bills
    ):
        recorded = payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "60.00"))
        monkeypatch.setattr(bill_repository, "apply_reversal", self._fail)

        with pytest.raises(CompensationFailureError) as exc_info:
            compensation_service.delete_transaction(recorded.transaction_id)

        assert exc_info.value.rollback_succeeded

    def test_fatal_reconciliation_reported(
        self,
        payment_service,
        compensation_service,
        bill_repository,
        credit_ledger,
        captured_logs,
        monkeypatch,
        two_bills,
    ):
        recorded = payment_service.record_payment(PaymentRequest(TEST_UNIT_ID, "100.00"))
        monkeypatch.setattr(bill_repository, "apply_reversal", self._fail)

        def fail_restore(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(credit_ledger, "restore_entries", fail_restore)

        with pytest.raises(CompensationFailureError) as exc_info:
            compensation_service.delete_transaction(recorded.transaction_id)

        assert not exc_info.value.rollback_succeeded
        (fatal,) = [r for r in captured_logs() if r["message"] == "fatal_reconciliation_required"]
        assert fatal["level"] == "CRITICAL"
        assert fatal["error_code"] == "FATAL_RECONCILIATION_REQUIRED"
        assert fatal["expected_balance"] == 600
        assert fatal["actual_balance"] == 0
