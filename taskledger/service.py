import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .accounts import AccountStore
from .catalog import TaskCatalog
from .exceptions import (
    AccountNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
    LedgerError,
    NotFoundError,
    WithdrawalNotFoundError,
)
from .models import (
    Account,
    EventType,
    LedgerEvent,
    OnboardOutcome,
    OnboardResult,
    Task,
    TaskCompletionResult,
    UserBalance,
    WithdrawalRequest,
    WithdrawalResult,
)
from .notifications import NotificationDispatcher
from .storage import InMemoryStorage
from .withdrawals import WithdrawalLedger

logger = logging.getLogger(__name__)

REFERRAL_BONUS = Decimal("5")


class LedgerEngine:
    """Routes every balance mutation through one atomic operation.

    Locks are taken per account id and per withdrawal id. Events are handed to
    the dispatcher only after all locks are released.
    """

    def __init__(
        self,
        storage: Optional[InMemoryStorage] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        referral_bonus: Decimal = REFERRAL_BONUS,
    ):
        self.storage = storage or InMemoryStorage()
        self.accounts = AccountStore(self.storage)
        self.tasks = TaskCatalog(self.storage)
        self.withdrawals = WithdrawalLedger(self.storage)
        self.dispatcher = dispatcher
        self.referral_bonus = Decimal(referral_bonus)

    def onboard(self, account_id: int, display_name: str, referrer_id: Optional[int] = None) -> OnboardResult:
        if referrer_id == account_id:
            referrer_id = None

        account, created = self.accounts.get_or_create(account_id, display_name, referrer_id)
        if not created:
            return OnboardResult(
                account=account,
                outcome=OnboardOutcome.EXISTING_ACCOUNT,
                message="Welcome back",
            )

        events = [self._event(EventType.NEW_ACCOUNT, account_id, display_name=account.display_name)]
        bonus = None
        if referrer_id is not None:
            # The new account is already committed; the bonus is best-effort.
            try:
                self.accounts.adjust_balance(referrer_id, self.referral_bonus)
            except LedgerError as e:
                logger.info("No referral bonus for %s from %s: %s", referrer_id, account_id, e.message)
            else:
                bonus = self.referral_bonus
                logger.info("Referral bonus %s credited to %s for %s", bonus, referrer_id, account_id)
                events.append(self._event(
                    EventType.REFERRAL_BONUS_GRANTED,
                    referrer_id,
                    amount=bonus,
                    display_name=account.display_name,
                    referred_account_id=account_id,
                ))

        self._emit(events)
        return OnboardResult(
            account=account,
            outcome=OnboardOutcome.NEW_ACCOUNT,
            referral_bonus=bonus,
            message="Account created",
        )

    def complete_task(
        self, account_id: int, task_id: int, idempotency_key: Optional[str] = None
    ) -> TaskCompletionResult:
        try:
            task = self.tasks.get_task(task_id)
            self.accounts.get(account_id)
        except NotFoundError as e:
            logger.warning("Task %s completion refused for %s: %s", task_id, account_id, e.message)
            raise

        with self.accounts.lock(account_id):
            if idempotency_key:
                previous = self.storage.completions.get(idempotency_key)
                if previous:
                    if previous["account_id"] != account_id or previous["task_id"] != task_id:
                        raise InvalidInputError(
                            f"Idempotency key {idempotency_key} was used for a different completion",
                            details=previous,
                        )
                    return TaskCompletionResult(
                        account=self.accounts.get(account_id),
                        task=task,
                        duplicate=True,
                        message="Task completion already recorded (idempotent return)",
                    )

            account = self.accounts.adjust_balance(account_id, task.reward)
            if idempotency_key:
                self.storage.completions[idempotency_key] = {"account_id": account_id, "task_id": task_id}

        logger.info("Account %s completed task %s (+%s)", account_id, task_id, task.reward)
        self._emit([self._event(
            EventType.TASK_COMPLETED,
            account_id,
            amount=task.reward,
            task_id=task_id,
            display_name=account.display_name,
        )])
        return TaskCompletionResult(account=account, task=task, message=f"You earned {task.reward} coins")

    def request_withdrawal(self, account_id: int, amount: Decimal) -> WithdrawalResult:
        amount = Decimal(amount)
        if not amount.is_finite() or amount <= 0:
            logger.warning("Withdrawal of %s refused for %s: not a positive amount", amount, account_id)
            raise InvalidInputError("Withdrawal amount must be positive", details={"amount": str(amount)})

        with self.accounts.lock(account_id):
            try:
                account = self.accounts.get(account_id)
            except AccountNotFoundError:
                logger.warning("Withdrawal of %s refused: account %s not found", amount, account_id)
                raise
            available = account.balance - self.withdrawals.pending_total(account_id)
            if amount > available:
                logger.warning("Withdrawal of %s refused for %s (available %s)", amount, account_id, available)
                raise InsufficientBalanceError(
                    f"Account {account_id} has {available} available, {amount} requested",
                    details={"account_id": account_id, "available": str(available), "requested": str(amount)},
                )
            withdrawal = self.withdrawals.create(account_id, amount, display_name=account.display_name)

        logger.info("Withdrawal %s of %s requested by %s", withdrawal.id, amount, account_id)
        self._emit([self._event(
            EventType.WITHDRAWAL_REQUESTED,
            account_id,
            amount=amount,
            request_id=withdrawal.id,
            display_name=account.display_name,
        )])
        return WithdrawalResult(withdrawal=withdrawal, account=account, message="Withdraw request sent")

    def approve_withdrawal(self, request_id: int) -> WithdrawalResult:
        with self.withdrawals.lock(request_id):
            try:
                withdrawal = self.withdrawals.get(request_id)
            except WithdrawalNotFoundError:
                logger.warning("Approval refused: withdrawal %s not found", request_id)
                raise
            if withdrawal.is_approved():
                return WithdrawalResult(
                    withdrawal=withdrawal,
                    account=self._find_account(withdrawal.account_id),
                    already_approved=True,
                    message="already approved",
                )

            with self.accounts.lock(withdrawal.account_id):
                try:
                    account = self.accounts.adjust_balance(withdrawal.account_id, -withdrawal.amount)
                except AccountNotFoundError:
                    logger.warning(
                        "Account %s of withdrawal %s is gone, approving without debit",
                        withdrawal.account_id, request_id,
                    )
                    account = None
                except InsufficientBalanceError:
                    logger.warning(
                        "Withdrawal %s left pending: account %s cannot cover %s",
                        request_id, withdrawal.account_id, withdrawal.amount,
                    )
                    raise
                withdrawal = self.withdrawals.approve(request_id)

        logger.info("Withdrawal %s approved (%s)", request_id, withdrawal.amount)
        self._emit([self._event(
            EventType.WITHDRAWAL_APPROVED,
            withdrawal.account_id,
            amount=withdrawal.amount,
            request_id=request_id,
            display_name=withdrawal.display_name,
        )])
        return WithdrawalResult(withdrawal=withdrawal, account=account, message="Withdrawal approved")

    def add_task(self, title: str, reward: Decimal, link: str = "#") -> Task:
        return self.tasks.add_task(title, reward, link)

    def list_tasks(self) -> list[Task]:
        return self.tasks.list_tasks()

    def get_account(self, account_id: int) -> Account:
        return self.accounts.get(account_id)

    def get_balance(self, account_id: int) -> UserBalance:
        with self.accounts.lock(account_id):
            account = self.accounts.get(account_id)
            reserved = self.withdrawals.pending_total(account_id)
        return UserBalance(
            account_id=account_id,
            balance=account.balance,
            reserved=reserved,
            available=account.balance - reserved,
        )

    def list_accounts(self) -> list[Account]:
        return self.accounts.list_all()

    def list_withdrawals(self) -> list[WithdrawalRequest]:
        return self.withdrawals.list_all()

    def _find_account(self, account_id: int) -> Optional[Account]:
        try:
            return self.accounts.get(account_id)
        except AccountNotFoundError:
            return None

    def _event(self, event_type: EventType, account_id: int, **fields) -> LedgerEvent:
        return LedgerEvent(type=event_type, account_id=account_id, created_at=datetime.now(timezone.utc), **fields)

    def _emit(self, events: list[LedgerEvent]) -> None:
        if self.dispatcher is None:
            return
        for event in events:
            self.dispatcher.emit(event)
