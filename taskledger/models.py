from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class WithdrawalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class EventType(str, Enum):
    NEW_ACCOUNT = "new_account"
    REFERRAL_BONUS_GRANTED = "referral_bonus_granted"
    TASK_COMPLETED = "task_completed"
    WITHDRAWAL_REQUESTED = "withdrawal_requested"
    WITHDRAWAL_APPROVED = "withdrawal_approved"


class OnboardOutcome(str, Enum):
    NEW_ACCOUNT = "new_account"
    EXISTING_ACCOUNT = "existing_account"


class Account(BaseModel):
    id: int
    display_name: str
    balance: Decimal = Decimal("0")
    referred_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Task(BaseModel):
    id: int
    title: str
    reward: Decimal
    link: str = "#"

    model_config = ConfigDict(from_attributes=True)


class WithdrawalRequest(BaseModel):
    id: int
    account_id: int
    display_name: Optional[str] = None
    amount: Decimal
    status: WithdrawalStatus = WithdrawalStatus.PENDING
    created_at: datetime
    approved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def is_approved(self) -> bool:
        return self.status == WithdrawalStatus.APPROVED


class UserBalance(BaseModel):
    account_id: int
    balance: Decimal
    reserved: Decimal
    available: Decimal


class LedgerEvent(BaseModel):
    type: EventType
    account_id: int
    amount: Optional[Decimal] = None
    request_id: Optional[int] = None
    task_id: Optional[int] = None
    display_name: Optional[str] = None
    referred_account_id: Optional[int] = None
    created_at: datetime


class OnboardResult(BaseModel):
    account: Account
    outcome: OnboardOutcome
    referral_bonus: Optional[Decimal] = None
    message: str


class TaskCompletionResult(BaseModel):
    account: Account
    task: Task
    duplicate: bool = False
    message: str


class WithdrawalResult(BaseModel):
    withdrawal: WithdrawalRequest
    account: Optional[Account] = None
    already_approved: bool = False
    message: str


class AddTaskRequest(BaseModel):
    title: str = Field(..., min_length=1)
    reward: Decimal
    link: str = "#"
    key: str = Field(default="", description="Admin shared secret")

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "title": "Follow us on X",
            "reward": 20,
            "link": "https://x.com/yourbrand",
            "key": "adminpass"
        }
    })


class ApproveWithdrawalRequest(BaseModel):
    id: int
    key: str = Field(default="", description="Admin shared secret")


class AddTaskResponse(BaseModel):
    success: bool
    task: Task


class ApproveWithdrawalResponse(BaseModel):
    success: bool
    message: str
    withdrawal: WithdrawalRequest


class LedgerDataResponse(BaseModel):
    users: list[Account]
    tasks: list[Task]
    withdraws: list[WithdrawalRequest]


class StatsResponse(BaseModel):
    user_count: int = Field(alias="userCount")
    withdraw_count: int = Field(alias="withdrawCount")
    pending_count: int = Field(alias="pendingCount")
    balance_total: str = Field(alias="balanceTotal")

    model_config = ConfigDict(populate_by_name=True)
