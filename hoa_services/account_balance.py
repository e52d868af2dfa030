"""Account balance adapter.

Keeps the running balance of the bank/cash account a transaction was
deposited to.  Callers treat ``adjust`` as best-effort: a failure is logged
and never aborts the payment or deletion it accompanies.
"""

from __future__ import annotations

from sqlalchemy import select

from hoa_kernel.exceptions import AccountNotFoundError
from hoa_kernel.logging_config import get_logger
from hoa_kernel.models.transaction import AccountModel
from hoa_services.base import BaseStore

logger = get_logger("services.account_balance")


class AccountBalanceAdapter(BaseStore):

    def open_account(self, account_id: str, name: str = "", balance: int = 0) -> None:
        self.session.add(AccountModel(account_key=account_id, name=name, balance=balance))
        self.session.flush()

    def balance(self, account_id: str) -> int:
        return self._get_model(account_id).balance

    def adjust(self, account_id: str, signed_amount: int) -> int:
        """Move the account balance by ``signed_amount``; returns the new balance."""
        model = self._get_model(account_id, lock=True)
        model.balance += signed_amount
        self.session.flush()
        logger.debug(
            "account_balance_adjusted",
            extra={"account_id": account_id, "change": signed_amount, "balance": model.balance},
        )
        return model.balance

    def _get_model(self, account_id: str, lock: bool = False) -> AccountModel:
        stmt = select(AccountModel).where(AccountModel.account_key == account_id)
        if lock:
            stmt = stmt.with_for_update()
        model = self.session.execute(stmt).scalar_one_or_none()
        if model is None:
            raise AccountNotFoundError(account_id)
        return model
