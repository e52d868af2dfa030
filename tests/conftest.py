"""
Pytest fixtures for the HOA ledger test suite.

Provides:
- Structured JSON logging and a log capture fixture
- In-memory SQLite sessions with all tables created per test
- A deterministic clock
- Fully wired stores and services
- A bill factory
"""

import json
import logging
from datetime import date
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from hoa_config.schema import LedgerConfig
from hoa_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from hoa_kernel.domain.billing import Bill, BillingModule
from hoa_kernel.domain.clock import DeterministicClock
from hoa_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from hoa_services.account_balance import AccountBalanceAdapter
from hoa_services.bill_repository import BillRepository
from hoa_services.cache_refresh import PeriodSummaryCache
from hoa_services.compensation_service import CompensationService
from hoa_services.credit_ledger import CreditLedgerStore
from hoa_services.dues_ledger import DuesLedgerStore
from hoa_services.payment_service import PaymentService
from hoa_services.transaction_store import TransactionStore

from tests.factories import TEST_ACCOUNT_ID, TEST_NOW, TEST_UNIT_ID


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture hoa_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, payment_service):
            payment_service.record_payment(...)
            logs = captured_logs()
            assert any(r["message"] == "payment_record_committed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("hoa_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    """In-memory SQLite engine with every table created."""
    eng = init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield eng
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    return DeterministicClock(TEST_NOW)


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig()


# =============================================================================
# Stores and services
# =============================================================================


@pytest.fixture
def bill_repository(session) -> BillRepository:
    return BillRepository(session)


@pytest.fixture
def credit_ledger(session) -> CreditLedgerStore:
    return CreditLedgerStore(session)


@pytest.fixture
def transaction_store(session) -> TransactionStore:
    return TransactionStore(session)


@pytest.fixture
def account_adapter(session) -> AccountBalanceAdapter:
    adapter = AccountBalanceAdapter(session)
    adapter.open_account(TEST_ACCOUNT_ID, name="Main bank account", balance=0)
    session.commit()
    return adapter


@pytest.fixture
def dues_ledger(session) -> DuesLedgerStore:
    return DuesLedgerStore(session)


@pytest.fixture
def period_cache(bill_repository, deterministic_clock) -> PeriodSummaryCache:
    return PeriodSummaryCache(bill_repository, clock=deterministic_clock)


@pytest.fixture
def payment_service(
    session,
    deterministic_clock,
    ledger_config,
    bill_repository,
    credit_ledger,
    transaction_store,
    account_adapter,
    dues_ledger,
    period_cache,
) -> PaymentService:
    return PaymentService(
        session,
        clock=deterministic_clock,
        config=ledger_config,
        bills=bill_repository,
        credit=credit_ledger,
        transactions=transaction_store,
        accounts=account_adapter,
        dues=dues_ledger,
        cache=period_cache,
    )


@pytest.fixture
def compensation_service(
    session,
    deterministic_clock,
    ledger_config,
    bill_repository,
    credit_ledger,
    transaction_store,
    account_adapter,
    dues_ledger,
    period_cache,
) -> CompensationService:
    return CompensationService(
        session,
        clock=deterministic_clock,
        config=ledger_config,
        bills=bill_repository,
        credit=credit_ledger,
        transactions=transaction_store,
        accounts=account_adapter,
        dues=dues_ledger,
        cache=period_cache,
    )


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def create_bill(session, bill_repository):
    """Insert a bill and commit.  Amounts are minor units."""

    def _create(
        period_key: str,
        base_charge: int,
        penalty_amount: int = 0,
        due_date: date | None = None,
        unit_id: str = TEST_UNIT_ID,
        billing_module: BillingModule = BillingModule.WATER,
    ) -> Bill:
        bill = bill_repository.create_bill(
            unit_id=unit_id,
            period_key=period_key,
            base_charge=base_charge,
            due_date=due_date or date(2025, 7, 10),
            penalty_amount=penalty_amount,
            billing_module=billing_module,
        )
        session.commit()
        return bill

    return _create


@pytest.fixture
def seed_credit(session, credit_ledger, deterministic_clock):
    """Give the test unit a starting credit balance (fiscal year 2026)."""

    def _seed(amount: int, unit_id: str = TEST_UNIT_ID, fiscal_year: int = 2026):
        entry = credit_ledger.update_balance(
            unit_id,
            fiscal_year,
            amount,
            deterministic_clock.now(),
            description="Opening balance",
        )
        session.commit()
        return entry

    return _seed

