"""
Tests for the payment distribution engine.

Covers:
- Full, partial and over-payments across several bills
- Credit consumption and creation
- Conservation of money
- Penalty-first vs base-first partial splits
- Month cutoff filtering
- Backdated penalty recalculation
- Validation errors
- Determinism (same inputs, same plan)
"""

from datetime import date

import pytest

from hoa_engines.distribution import DistributionEngine, PartialPaymentPolicy
from hoa_engines.penalty import PenaltyCalculator
from hoa_kernel.domain.billing import BillStatus
from hoa_kernel.exceptions import InvalidInputError, ValidationError
from tests.factories import TEST_UNIT_ID, make_bill


def _two_bills():
    return [
        make_bill("2026-00", 4400, penalty_amount=600),
        make_bill("2026-01", 4400, due_date=date(2025, 8, 10)),
    ]


def _assert_conserved(dist):
    assert (
        dist.total_base_charges + dist.total_penalties + dist.overpayment - dist.credit_used
        == dist.payment_amount
    )
    assert dist.credit_used - dist.overpayment == (
        dist.current_credit_balance - dist.new_credit_balance
    )


class TestFullAndOverpayment:
    """Tests for payments that cover every bill."""

    def setup_method(self):
        self.engine = DistributionEngine()

    def test_overpayment_becomes_credit(self):
        """10000 against 9400 due pays both bills and leaves 600 credit."""
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=10000,
            current_credit_balance=0,
            unpaid_bills=_two_bills(),
        )

        assert dist.total_bills_due == 9400
        assert dist.total_base_charges == 8800
        assert dist.total_penalties == 600
        assert dist.overpayment == 600
        assert dist.credit_used == 0
        assert dist.new_credit_balance == 600
        assert [s.new_status for s in dist.settlements] == [BillStatus.PAID, BillStatus.PAID]
        _assert_conserved(dist)

    def test_exact_payment(self):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=9400,
            current_credit_balance=0,
            unpaid_bills=_two_bills(),
        )

        assert dist.overpayment == 0
        assert dist.new_credit_balance == 0
        assert all(s.new_status == BillStatus.PAID for s in dist.settlements)
        assert dist.credit_delta == 0

    def test_overpayment_keeps_existing_credit(self):
        """When cash alone covers the bills, existing credit is untouched."""
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=10000,
            current_credit_balance=500,
            unpaid_bills=_two_bills(),
        )

        assert dist.credit_used == 0
        assert dist.overpayment == 600
        assert dist.new_credit_balance == 1100
        _assert_conserved(dist)


class TestPartialPayment:
    """Tests for payments that run out mid-walk."""

    def setup_method(self):
        self.engine = DistributionEngine()

    def test_oldest_first_then_partial(self):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=6000,
            current_credit_balance=0,
            unpaid_bills=_two_bills(),
        )

        first, second = dist.settlements
        assert first.amount_paid == 5000
        assert first.new_status == BillStatus.PAID
        assert second.amount_paid == 1000
        assert second.base_charge_paid == 1000
        assert second.new_status == BillStatus.PARTIAL
        assert dist.overpayment == 0
        assert dist.new_credit_balance == 0
        _assert_conserved(dist)

    def test_bills_after_partial_receive_nothing(self):
        bills = _two_bills() + [make_bill("2026-02", 4400, due_date=date(2025, 9, 10))]
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=6000,
            current_credit_balance=0,
            unpaid_bills=bills,
        )

        assert dist.settlements[2].amount_paid == 0
        assert dist.settlements[2].new_status == BillStatus.UNPAID
        assert [s.bill_id for s in dist.paid_settlements] == ["2026-00", "2026-01"]

    def test_penalty_first_split(self):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=1000,
            current_credit_balance=0,
            unpaid_bills=[make_bill("2026-00", 4400, penalty_amount=600)],
        )

        settlement = dist.settlements[0]
        assert settlement.penalty_paid == 600
        assert settlement.base_charge_paid == 400

    def test_base_first_split(self):
        engine = DistributionEngine(partial_policy=PartialPaymentPolicy.BASE_FIRST)
        dist = engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=1000,
            current_credit_balance=0,
            unpaid_bills=[make_bill("2026-00", 4400, penalty_amount=600)],
        )

        settlement = dist.settlements[0]
        assert settlement.base_charge_paid == 1000
        assert settlement.penalty_paid == 0
        assert engine.partial_policy == PartialPaymentPolicy.BASE_FIRST

    def test_partially_paid_bill_continues(self):
        """A bill with earlier payments only needs its unpaid remainder."""
        bill = make_bill("2026-00", 4400, penalty_amount=600, penalty_paid=600, base_paid=1000)
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=3400,
            current_credit_balance=0,
            unpaid_bills=[bill],
        )

        settlement = dist.settlements[0]
        assert settlement.unpaid_before == 3400
        assert settlement.base_charge_paid == 3400
        assert settlement.penalty_paid == 0
        assert settlement.previous_status == BillStatus.PARTIAL
        assert settlement.new_status == BillStatus.PAID


class TestCredit:
    """Tests for credit consumption."""

    def setup_method(self):
        self.engine = DistributionEngine()

    def test_credit_tops_up_short_payment(self):
        """3000 cash plus 3000 credit settles a 5000 bill, 1000 credit remains."""
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=3000,
            current_credit_balance=3000,
            unpaid_bills=[make_bill("2026-00", 4400, penalty_amount=600)],
        )

        assert dist.total_available == 6000
        assert dist.settlements[0].new_status == BillStatus.PAID
        assert dist.credit_used == 2000
        assert dist.new_credit_balance == 1000
        assert dist.credit_delta == -2000
        _assert_conserved(dist)

    def test_credit_exhausted_on_partial(self):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=1000,
            current_credit_balance=1000,
            unpaid_bills=[make_bill("2026-00", 4400, penalty_amount=600)],
        )

        assert dist.settlements[0].amount_paid == 2000
        assert dist.credit_used == 1000
        assert dist.new_credit_balance == 0
        _assert_conserved(dist)

    def test_zero_payment_uses_credit(self):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=0,
            current_credit_balance=5000,
            unpaid_bills=[make_bill("2026-00", 4400)],
        )

        assert dist.settlements[0].new_status == BillStatus.PAID
        assert dist.credit_used == 4400
        assert dist.new_credit_balance == 600
        _assert_conserved(dist)

    def test_no_bills_all_credit(self):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=2500,
            current_credit_balance=700,
            unpaid_bills=[],
        )

        assert dist.settlements == ()
        assert dist.overpayment == 2500
        assert dist.credit_used == 0
        assert dist.new_credit_balance == 3200
        _assert_conserved(dist)

    def test_zero_payment_no_bills_is_noop(self):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=0,
            current_credit_balance=700,
            unpaid_bills=[],
        )

        assert dist.is_noop

    @pytest.mark.parametrize(
        "payment, credit",
        [(0, 0), (1, 0), (4999, 1), (5000, 9999), (9399, 1), (12345, 678), (20000, 20000)],
    )
    def test_conservation_holds(self, payment, credit):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=payment,
            current_credit_balance=credit,
            unpaid_bills=_two_bills(),
        )

        _assert_conserved(dist)
        assert dist.new_credit_balance >= 0
        assert dist.total_applied <= dist.total_available


class TestMonthCutoff:
    """Tests for restricting the walk to early months."""

    def setup_method(self):
        self.engine = DistributionEngine()

    def test_later_months_excluded(self):
        bills = _two_bills() + [make_bill("2026-02", 4400, due_date=date(2025, 9, 10))]
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=20000,
            current_credit_balance=0,
            unpaid_bills=bills,
            month_cutoff=1,
        )

        assert [s.bill_id for s in dist.settlements] == ["2026-00", "2026-01"]
        assert dist.overpayment == 20000 - 9400

    def test_cutoff_spans_fiscal_years(self):
        bills = [
            make_bill("2025-11", 4400, due_date=date(2025, 6, 10)),
            make_bill("2026-00", 4400),
        ]
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=4400,
            current_credit_balance=0,
            unpaid_bills=bills,
            month_cutoff=0,
        )

        assert [b.bill_id for b in dist.bills] == ["2025-11", "2026-00"]
        assert dist.settlements[0].bill_id == "2025-11"
        assert dist.settlements[0].new_status == BillStatus.PAID
        assert dist.settlements[1].amount_paid == 0

    def test_explicit_cutoff_year(self):
        bills = [
            make_bill("2025-10", 4400, due_date=date(2025, 5, 10)),
            make_bill("2025-11", 4400, due_date=date(2025, 6, 10)),
            make_bill("2026-00", 4400),
        ]
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=20000,
            current_credit_balance=0,
            unpaid_bills=bills,
            month_cutoff=10,
            cutoff_year=2025,
        )

        assert [s.bill_id for s in dist.settlements] == ["2025-10"]
        assert dist.overpayment == 20000 - 4400

    def test_cutoff_with_no_bills(self):
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=100,
            current_credit_balance=0,
            unpaid_bills=[],
            month_cutoff=0,
        )

        assert dist.overpayment == 100

    def test_cutoff_out_of_range(self):
        with pytest.raises(ValidationError):
            self.engine.distribute(
                unit_id=TEST_UNIT_ID,
                payment_amount=100,
                current_credit_balance=0,
                unpaid_bills=[],
                month_cutoff=12,
            )

    def test_cutoff_needs_period_keys(self):
        with pytest.raises(InvalidInputError):
            self.engine.distribute(
                unit_id=TEST_UNIT_ID,
                payment_amount=100,
                current_credit_balance=0,
                unpaid_bills=[make_bill("water-july", 4400)],
                month_cutoff=3,
            )


class TestBackdated:
    """Tests for payments effective on an earlier date."""

    def setup_method(self):
        self.engine = DistributionEngine(PenaltyCalculator(penalty_rate="0.05", grace_days=10))

    def test_penalty_recalculated_as_of_date(self):
        bill = make_bill("2026-00", 10000, due_date=date(2025, 7, 10))
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=10500,
            current_credit_balance=0,
            unpaid_bills=[bill],
            as_of_date=date(2025, 8, 25),
            today=date(2025, 9, 15),
        )

        assert dist.backdated
        assert dist.as_of_date == date(2025, 8, 25)
        assert dist.bills[0].penalty_amount == 500
        assert dist.total_penalties == 500
        assert dist.total_base_charges == 10000
        assert dist.overpayment == 0

    def test_same_day_is_not_backdated(self):
        bill = make_bill("2026-00", 10000, due_date=date(2025, 7, 10))
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=10500,
            current_credit_balance=0,
            unpaid_bills=[bill],
            as_of_date=date(2025, 9, 15),
            today=date(2025, 9, 15),
        )

        assert not dist.backdated
        assert dist.bills[0].penalty_amount == 0
        assert dist.overpayment == 500

    def test_within_grace_clears_penalty(self):
        """Paying as of a date inside grace drops the stored penalty."""
        bill = make_bill("2026-00", 10000, penalty_amount=1025, due_date=date(2025, 7, 10))
        dist = self.engine.distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=10000,
            current_credit_balance=0,
            unpaid_bills=[bill],
            as_of_date=date(2025, 7, 15),
            today=date(2025, 9, 15),
        )

        assert dist.bills[0].penalty_amount == 0
        assert dist.settlements[0].new_status == BillStatus.PAID


class TestValidationAndDeterminism:
    """Tests for input validation and repeatability."""

    def setup_method(self):
        self.engine = DistributionEngine()

    @pytest.mark.parametrize("unit_id", ["", "   "])
    def test_blank_unit_rejected(self, unit_id):
        with pytest.raises(ValidationError):
            self.engine.distribute(
                unit_id=unit_id, payment_amount=100, current_credit_balance=0, unpaid_bills=[]
            )

    def test_negative_payment_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self.engine.distribute(
                unit_id=TEST_UNIT_ID, payment_amount=-1, current_credit_balance=0, unpaid_bills=[]
            )
        assert exc_info.value.field == "payment_amount"

    def test_negative_credit_rejected(self):
        with pytest.raises(ValidationError):
            self.engine.distribute(
                unit_id=TEST_UNIT_ID, payment_amount=1, current_credit_balance=-1, unpaid_bills=[]
            )

    def test_same_inputs_same_plan(self):
        kwargs = dict(
            unit_id=TEST_UNIT_ID,
            payment_amount=6000,
            current_credit_balance=250,
            unpaid_bills=_two_bills(),
        )
        assert self.engine.distribute(**kwargs) == self.engine.distribute(**kwargs)

    def test_inputs_not_mutated(self):
        bills = _two_bills()
        before = list(bills)
        self.engine.distribute(
            unit_id=TEST_UNIT_ID, payment_amount=10000, current_credit_balance=0, unpaid_bills=bills
        )
        assert bills == before
        assert bills[0].base_paid == 0
