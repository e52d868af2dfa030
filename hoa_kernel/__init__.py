"""
HOA Ledger Kernel

Accounting core for property/HOA management:
- Integer minor-unit currency arithmetic
- Canonical bill, payment entry and credit ledger shapes
- Structured JSON logging and typed exceptions
- SQLAlchemy persistence for bills, credit balances and transactions
"""

__version__ = "0.1.0"
