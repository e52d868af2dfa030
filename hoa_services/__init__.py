"""
hoa_services -- imperative shell.

Stores (flush only, never commit) and the two orchestrating services that
own transaction boundaries: PaymentService and CompensationService.
"""

from hoa_services.account_balance import AccountBalanceAdapter
from hoa_services.bill_repository import BillRepository, PaymentHistoryItem, UnpaidSummary
from hoa_services.cache_refresh import PeriodSummary, PeriodSummaryCache
from hoa_services.compensation_service import CompensationResult, CompensationService
from hoa_services.credit_ledger import CreditLedgerStore, RemovedCreditEntry
from hoa_services.dues_ledger import DuesLedgerStore
from hoa_services.payment_service import (
    PaymentPreview,
    PaymentRecordResult,
    PaymentRequest,
    PaymentService,
)
from hoa_services.transaction_store import TransactionStore

__all__ = [
    "AccountBalanceAdapter",
    "BillRepository",
    "PaymentHistoryItem",
    "UnpaidSummary",
    "PeriodSummary",
    "PeriodSummaryCache",
    "CompensationResult",
    "CompensationService",
    "CreditLedgerStore",
    "RemovedCreditEntry",
    "DuesLedgerStore",
    "PaymentPreview",
    "PaymentRecordResult",
    "PaymentRequest",
    "PaymentService",
    "TransactionStore",
]
