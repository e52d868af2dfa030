"""ORM models.  Importing this package registers every table on Base.metadata."""

from hoa_kernel.models.bill import BillModel, BillPaymentModel
from hoa_kernel.models.credit import CreditBalanceModel, CreditEntryModel
from hoa_kernel.models.dues import DuesRecordModel
from hoa_kernel.models.transaction import AccountModel, AuditLogModel, TransactionModel

__all__ = [
    "BillModel",
    "BillPaymentModel",
    "CreditBalanceModel",
    "CreditEntryModel",
    "DuesRecordModel",
    "TransactionModel",
    "AccountModel",
    "AuditLogModel",
]
