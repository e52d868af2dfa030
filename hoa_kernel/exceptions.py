"""
Typed Exception Hierarchy for the HOA Ledger Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from HOALedgerError:

    HOALedgerError (base)
    |
    +-- ValidationError
    |   +-- InvalidInputError
    |   +-- InconsistentReadingError
    |
    +-- NotFoundError
    |   +-- BillNotFoundError
    |   +-- TransactionNotFoundError
    |   +-- CreditLedgerNotFoundError
    |   +-- DuesRecordNotFoundError
    |   +-- AccountNotFoundError
    |
    +-- IntegrityViolationError
    +-- InsufficientCreditError
    |
    +-- CompensationFailureError
    +-- FatalReconciliationRequiredError
    +-- BestEffortFailureError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                            | When Raised
--------------|---------------------------------|-------------------------------------
Validation    | VALIDATION_ERROR                | Bad request (amount, ids, cutoff)
              | INVALID_INPUT                   | Negative reading, non-numeric amount
              | INCONSISTENT_READING            | Rollover-adjusted consumption absurd
--------------|---------------------------------|-------------------------------------
Not found     | BILL_NOT_FOUND                  | Bill id/unit pair does not exist
              | TRANSACTION_NOT_FOUND           | Deleting/reading unknown transaction
              | CREDIT_LEDGER_NOT_FOUND         | No credit document for unit/year
              | DUES_RECORD_NOT_FOUND           | No dues document for unit/year
              | ACCOUNT_NOT_FOUND               | Account balance target missing
--------------|---------------------------------|-------------------------------------
Integrity     | INTEGRITY_VIOLATION             | Allocations do not reconcile
              | INSUFFICIENT_CREDIT             | Credit balance would go negative
--------------|---------------------------------|-------------------------------------
Compensation  | COMPENSATION_FAILURE            | Bill/dues cleanup failed on delete
              | FATAL_RECONCILIATION_REQUIRED   | Credit rollback also failed
              | BEST_EFFORT_FAILURE             | Account adjust / cache refresh failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. VALIDATION AND INTEGRITY ERRORS ARE LOCAL:

    try:
        service.record_payment(request)
    except ValidationError as e:
        return {"error": e.code, "message": str(e)}

   Nothing has been written when these are raised.

2. COMPENSATION FAILURES CARRY THE ORIGINAL ERROR:

    except CompensationFailureError as e:
        log.error(e.code, extra={"cause": repr(e.__cause__)})
        if not e.rollback_succeeded:
            page_operator(e.transaction_id)

3. BEST-EFFORT FAILURES ARE NEVER RAISED TO CALLERS. They are constructed
   only so that the log record carries a stable code and structured fields.
"""


class HOALedgerError(Exception):
    """
    Base exception for all HOA ledger errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "HOA_LEDGER_ERROR"


# Validation


class ValidationError(HOALedgerError):
    """Request rejected before any side effect."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidInputError(ValidationError):
    """Amount or reading is not a usable number."""

    code: str = "INVALID_INPUT"

    def __init__(self, message: str, value: object = None, field: str | None = None):
        self.value = value
        super().__init__(message, field=field)


class InconsistentReadingError(ValidationError):
    """Meter readings produce an impossible consumption figure."""

    code: str = "INCONSISTENT_READING"

    def __init__(self, current: int, previous: int, consumption: int):
        self.current = current
        self.previous = previous
        self.consumption = consumption
        super().__init__(
            f"Inconsistent meter reading: current={current}, previous={previous}, "
            f"consumption={consumption}"
        )


# Not found


class NotFoundError(HOALedgerError):
    """Base exception for missing documents."""

    code: str = "NOT_FOUND"


class BillNotFoundError(NotFoundError):
    """Bill with given id was not found for the unit."""

    code: str = "BILL_NOT_FOUND"

    def __init__(self, bill_id: str, unit_id: str | None = None):
        self.bill_id = bill_id
        self.unit_id = unit_id
        super().__init__(f"Bill not found: {bill_id} (unit {unit_id})")


class TransactionNotFoundError(NotFoundError):
    """Transaction with given id was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class CreditLedgerNotFoundError(NotFoundError):
    """No credit balance document exists for the unit and fiscal year."""

    code: str = "CREDIT_LEDGER_NOT_FOUND"

    def __init__(self, unit_id: str, fiscal_year: int):
        self.unit_id = unit_id
        self.fiscal_year = fiscal_year
        super().__init__(f"Credit ledger not found: unit {unit_id}, FY{fiscal_year}")


class DuesRecordNotFoundError(NotFoundError):
    """No dues document exists for the unit and fiscal year."""

    code: str = "DUES_RECORD_NOT_FOUND"

    def __init__(self, unit_id: str, fiscal_year: int):
        self.unit_id = unit_id
        self.fiscal_year = fiscal_year
        super().__init__(f"Dues record not found: unit {unit_id}, FY{fiscal_year}")


class AccountNotFoundError(NotFoundError):
    """Account to adjust does not exist."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


# Integrity


class IntegrityViolationError(HOALedgerError):
    """
    Allocations do not reconcile to the transaction amount.

    Raised before commit; the transaction must not be created.
    """

    code: str = "INTEGRITY_VIOLATION"

    def __init__(self, expected_total: int, actual_total: int, tolerance: int):
        self.expected_total = expected_total
        self.actual_total = actual_total
        self.tolerance = tolerance
        super().__init__(
            f"Allocation total {actual_total} does not match transaction amount "
            f"{expected_total} (tolerance {tolerance})"
        )


class InsufficientCreditError(HOALedgerError):
    """A credit balance update would leave the balance negative."""

    code: str = "INSUFFICIENT_CREDIT"

    def __init__(self, unit_id: str, current_balance: int, change: int):
        self.unit_id = unit_id
        self.current_balance = current_balance
        self.change = change
        super().__init__(
            f"Insufficient credit for unit {unit_id}: balance {current_balance}, "
            f"change {change}"
        )


# Compensation


class CompensationFailureError(HOALedgerError):
    """
    Bill/dues cleanup failed while deleting a transaction.

    The original error is chained as ``__cause__``.  ``rollback_succeeded``
    tells whether the credit reversal was restored.
    """

    code: str = "COMPENSATION_FAILURE"

    def __init__(
        self,
        transaction_id: str,
        unit_id: str,
        reason: str,
        rollback_succeeded: bool,
    ):
        self.transaction_id = transaction_id
        self.unit_id = unit_id
        self.reason = reason
        self.rollback_succeeded = rollback_succeeded
        super().__init__(
            f"Compensation failed for transaction {transaction_id}: {reason} "
            f"(credit rollback {'succeeded' if rollback_succeeded else 'FAILED'})"
        )


class FatalReconciliationRequiredError(HOALedgerError):
    """
    Credit rollback failed after a compensation failure.

    Manual reconciliation is required.  This error is logged at CRITICAL
    and never retried.
    """

    code: str = "FATAL_RECONCILIATION_REQUIRED"

    def __init__(
        self,
        unit_id: str,
        transaction_id: str,
        expected_balance: int,
        actual_balance: int | None,
    ):
        self.unit_id = unit_id
        self.transaction_id = transaction_id
        self.expected_balance = expected_balance
        self.actual_balance = actual_balance
        super().__init__(
            f"Manual reconciliation required for unit {unit_id}: credit balance "
            f"should be {expected_balance}, is {actual_balance} "
            f"(transaction {transaction_id})"
        )


class BestEffortFailureError(HOALedgerError):
    """A non-critical side step failed; logged, never surfaced."""

    code: str = "BEST_EFFORT_FAILURE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Best-effort step '{operation}' failed: {reason}")
