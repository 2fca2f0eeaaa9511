"""
Task Reward Ledger

This module provides:
- Accounts with non-negative coin balances
- Task catalog with reward credits on completion
- Referral bonus on first contact
- Withdrawal lifecycle: pending → approved (idempotent approval)
- Per-account and per-request locking for atomic mutations
"""

from .exceptions import (
    LedgerError,
    NotFoundError,
    AccountNotFoundError,
    TaskNotFoundError,
    WithdrawalNotFoundError,
    InsufficientBalanceError,
    InvalidInputError,
)
from .models import (
    Account,
    Task,
    WithdrawalRequest,
    WithdrawalStatus,
    EventType,
    LedgerEvent,
)
from .notifications import NotificationDispatcher
from .service import LedgerEngine

__all__ = [
    "LedgerError",
    "NotFoundError",
    "AccountNotFoundError",
    "TaskNotFoundError",
    "WithdrawalNotFoundError",
    "InsufficientBalanceError",
    "InvalidInputError",
    "Account",
    "Task",
    "WithdrawalRequest",
    "WithdrawalStatus",
    "EventType",
    "LedgerEvent",
    "NotificationDispatcher",
    "LedgerEngine",
]
