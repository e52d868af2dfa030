"""
BaseStore -- common base for the SQLAlchemy-backed stores.

Responsibility:
    Provides the constructor and session-handling contract shared by the
    bill repository, credit ledger, transaction store, account adapter and
    dues ledger.

Invariants enforced:
    Stores flush within the caller's transaction and never commit or roll
    back themselves.  The orchestrating service (PaymentService,
    CompensationService) owns transaction boundaries, so a multi-step write
    either lands together or not at all.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseStore(ABC):
    """
    Abstract base for stores.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
    """

    def __init__(self, session: Session):
        self.session = session
