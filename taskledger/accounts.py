import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .exceptions import AccountNotFoundError, InsufficientBalanceError
from .models import Account
from .storage import InMemoryStorage

logger = logging.getLogger(__name__)


class AccountStore:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def lock(self, account_id: int):
        return self.storage.account_locks(account_id)

    def get_or_create(
        self, account_id: int, display_name: str, referrer_id: Optional[int] = None
    ) -> tuple[Account, bool]:
        with self.lock(account_id):
            account_data = self.storage.accounts.get(account_id)
            if account_data:
                if display_name and account_data["display_name"] != display_name:
                    account_data["display_name"] = display_name
                return Account(**account_data), False

            account_data = {
                "id": account_id,
                "display_name": display_name or str(account_id),
                "balance": Decimal("0"),
                "referred_by": referrer_id,
                "created_at": datetime.now(timezone.utc),
            }
            self.storage.accounts[account_id] = account_data

        logger.info("Created account %s (%s)", account_id, account_data["display_name"])
        return Account(**account_data), True

    def get(self, account_id: int) -> Account:
        account_data = self.storage.accounts.get(account_id)
        if not account_data:
            raise AccountNotFoundError(f"Account {account_id} not found", details={"account_id": account_id})
        return Account(**account_data)

    def exists(self, account_id: int) -> bool:
        return account_id in self.storage.accounts

    def adjust_balance(self, account_id: int, delta: Decimal) -> Account:
        """Apply ``balance += delta`` atomically; the only write path for balances."""
        with self.lock(account_id):
            account_data = self.storage.accounts.get(account_id)
            if not account_data:
                raise AccountNotFoundError(f"Account {account_id} not found", details={"account_id": account_id})

            new_balance = account_data["balance"] + delta
            if new_balance < 0:
                raise InsufficientBalanceError(
                    f"Account {account_id} cannot cover {-delta}",
                    details={
                        "account_id": account_id,
                        "balance": str(account_data["balance"]),
                        "delta": str(delta),
                    },
                )
            account_data["balance"] = new_balance
            return Account(**account_data)

    def list_all(self) -> list[Account]:
        return [Account(**data) for data in list(self.storage.accounts.values())]
