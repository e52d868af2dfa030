"""
Tests for the engine tracer.

Covers:
- Deterministic input fingerprints
- LEDGER_ENGINE_TRACE emission by decorated engines
"""

import pytest

from hoa_engines.distribution import DistributionEngine
from hoa_engines.tracer import compute_input_fingerprint, traced_engine
from hoa_kernel.exceptions import ValidationError
from tests.factories import TEST_UNIT_ID, make_bill


class TestComputeInputFingerprint:
    """Tests for fingerprint hashing."""

    def test_deterministic(self):
        kwargs = {"unit_id": "203", "payment_amount": 10000}
        fields = ("unit_id", "payment_amount")
        fp1 = compute_input_fingerprint(fields, kwargs)
        fp2 = compute_input_fingerprint(fields, dict(kwargs))
        assert fp1 == fp2
        assert len(fp1) == 16

    def test_different_inputs_differ(self):
        fields = ("unit_id", "payment_amount")
        fp1 = compute_input_fingerprint(fields, {"unit_id": "203", "payment_amount": 10000})
        fp2 = compute_input_fingerprint(fields, {"unit_id": "203", "payment_amount": 10001})
        assert fp1 != fp2

    def test_missing_field_same_as_none(self):
        fields = ("unit_id", "month_cutoff")
        assert compute_input_fingerprint(fields, {"unit_id": "203"}) == compute_input_fingerprint(
            fields, {"unit_id": "203", "month_cutoff": None}
        )

    def test_dict_key_order_irrelevant(self):
        fields = ("data",)
        fp1 = compute_input_fingerprint(fields, {"data": {"a": 1, "b": 2}})
        fp2 = compute_input_fingerprint(fields, {"data": {"b": 2, "a": 1}})
        assert fp1 == fp2


class TestTracedEngine:
    """Tests for the decorator."""

    def test_wraps_preserves_name(self):
        @traced_engine("sample", "0.1")
        def compute(*, value):
            return value * 2

        assert compute.__name__ == "compute"
        assert compute(value=21) == 42

    def test_distribution_emits_trace(self, captured_logs):
        DistributionEngine().distribute(
            unit_id=TEST_UNIT_ID,
            payment_amount=4400,
            current_credit_balance=0,
            unpaid_bills=[make_bill("2026-00", 4400)],
        )

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert len(traces) == 1
        trace = traces[0]
        assert trace["engine_name"] == "distribution"
        assert trace["engine_version"] == "1.0"
        assert len(trace["input_fingerprint"]) == 16
        assert trace["duration_ms"] >= 0

    def test_identical_previews_share_fingerprint(self, captured_logs):
        engine = DistributionEngine()
        for _ in range(2):
            engine.distribute(
                unit_id=TEST_UNIT_ID,
                payment_amount=4400,
                current_credit_balance=100,
                unpaid_bills=[make_bill("2026-00", 4400)],
            )

        fps = {r["input_fingerprint"] for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"}
        assert len(fps) == 1

    def test_bill_contents_change_fingerprint(self):
        fields = ("unpaid_bills",)
        fp1 = compute_input_fingerprint(fields, {"unpaid_bills": [make_bill("2026-00", 4400)]})
        fp2 = compute_input_fingerprint(
            fields, {"unpaid_bills": [make_bill("2026-00", 4400, penalty_amount=220)]}
        )
        assert fp1 != fp2

    def test_failed_call_traced_and_raised(self, captured_logs):
        @traced_engine("sample", "0.1")
        def compute(*, value):
            raise ValidationError("bad value", field="value")

        with pytest.raises(ValidationError):
            compute(value=1)

        (trace,) = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert trace["outcome"] == "error"
        assert trace["error_code"] == "VALIDATION_ERROR"
