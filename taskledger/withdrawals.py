from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .exceptions import InvalidInputError, WithdrawalNotFoundError
from .models import WithdrawalRequest, WithdrawalStatus
from .storage import InMemoryStorage


class WithdrawalLedger:
    def __init__(self, storage: InMemoryStorage):
        self.storage = storage

    def lock(self, request_id: int):
        return self.storage.withdrawal_locks(request_id)

    def create(self, account_id: int, amount: Decimal, display_name: Optional[str] = None) -> WithdrawalRequest:
        # Balance sufficiency is the caller's job, under the account lock.
        amount = Decimal(amount)
        if not amount.is_finite() or amount <= 0:
            raise InvalidInputError("Withdrawal amount must be positive", details={"amount": str(amount)})

        request_id = self.storage.next_withdrawal_id()
        withdrawal_data = {
            "id": request_id,
            "account_id": account_id,
            "display_name": display_name,
            "amount": amount,
            "status": WithdrawalStatus.PENDING,
            "created_at": datetime.now(timezone.utc),
            "approved_at": None,
        }
        self.storage.withdrawals[request_id] = withdrawal_data
        self.storage.withdrawals_by_account.setdefault(account_id, []).append(request_id)
        return WithdrawalRequest(**withdrawal_data)

    def get(self, request_id: int) -> WithdrawalRequest:
        withdrawal_data = self.storage.withdrawals.get(request_id)
        if not withdrawal_data:
            raise WithdrawalNotFoundError(
                f"Withdrawal {request_id} not found", details={"request_id": request_id}
            )
        return WithdrawalRequest(**withdrawal_data)

    def approve(self, request_id: int) -> WithdrawalRequest:
        with self.lock(request_id):
            withdrawal_data = self.storage.withdrawals.get(request_id)
            if not withdrawal_data:
                raise WithdrawalNotFoundError(
                    f"Withdrawal {request_id} not found", details={"request_id": request_id}
                )
            if withdrawal_data["status"] == WithdrawalStatus.APPROVED:
                return WithdrawalRequest(**withdrawal_data)

            withdrawal_data["status"] = WithdrawalStatus.APPROVED
            withdrawal_data["approved_at"] = datetime.now(timezone.utc)
            return WithdrawalRequest(**withdrawal_data)

    def list_all(self) -> list[WithdrawalRequest]:
        return [
            WithdrawalRequest(**self.storage.withdrawals[request_id])
            for request_id in sorted(list(self.storage.withdrawals))
        ]

    def list_for_account(self, account_id: int) -> list[WithdrawalRequest]:
        request_ids = list(self.storage.withdrawals_by_account.get(account_id, ()))
        return [WithdrawalRequest(**self.storage.withdrawals[request_id]) for request_id in request_ids]

    def pending_total(self, account_id: int) -> Decimal:
        total = Decimal("0")
        for request_id in list(self.storage.withdrawals_by_account.get(account_id, ())):
            withdrawal_data = self.storage.withdrawals[request_id]
            if withdrawal_data["status"] == WithdrawalStatus.PENDING:
                total += withdrawal_data["amount"]
        return total
