from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal

from .models import BudgetPeriod


class User(BaseModel):
    id: str
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    profile_image_url: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Banking
class AuthUrlResponse(BaseModel):
    authUrl: str


class CompleteConnectionRequest(BaseModel):
    code: Optional[str] = None
    state: Optional[str] = None


class CompleteConnectionResponse(BaseModel):
    success: bool
    message: str
    accountsCount: int
    transactionsCount: int


class SyncResponse(BaseModel):
    success: bool
    accountsSynced: int
    transactionsSynced: int
    totalAccounts: int


class ForceSyncResponse(BaseModel):
    success: bool
    message: str
    newTransactions: int


class ConnectionSyncResult(BaseModel):
    connectionId: int
    success: bool
    accountsSynced: int = 0
    transactionsSynced: int = 0
    error: Optional[str] = None


class SyncAllResponse(BaseModel):
    success: bool
    results: List[ConnectionSyncResult]


class ConnectionSummary(BaseModel):
    id: int
    lastSynced: Optional[datetime] = None
    createdAt: Optional[datetime] = None


class BankingStatus(BaseModel):
    connected: bool
    connections: List[ConnectionSummary]
    institutions: List[str]
    lastSynced: Optional[datetime] = None
    accountsCount: int


class SuccessResponse(BaseModel):
    success: bool


# Accounts
class AccountBase(BaseModel):
    name: str
    type: str
    balance: Decimal = Decimal("0")
    currency: str = "GBP"
    institution_name: Optional[str] = None
    account_number: Optional[str] = None


class AccountCreate(AccountBase):
    pass


class AccountUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    balance: Optional[Decimal] = None
    currency: Optional[str] = None
    institution_name: Optional[str] = None
    account_number: Optional[str] = None


class Account(AccountBase):
    id: int
    user_id: str
    connection_id: Optional[int] = None
    external_id: Optional[str] = None
    is_active: bool
    last_synced: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Transactions
class TransactionBase(BaseModel):
    amount: Decimal
    description: str
    date: datetime


class TransactionCreate(TransactionBase):
    account_id: int
    category: Optional[str] = None
    transaction_metadata: Optional[Dict[str, Any]] = Field(None, alias="metadata")


class TransactionUpdate(BaseModel):
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    date: Optional[datetime] = None
    category: Optional[str] = None


class Transaction(TransactionBase):
    id: int
    account_id: int
    external_id: Optional[str] = None
    category: Optional[str] = None
    category_confidence: Optional[Decimal] = None
    is_manually_overridden: bool = False
    transaction_metadata: Optional[Dict[str, Any]] = Field(None, serialization_alias="metadata")
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Budgets
class BudgetBase(BaseModel):
    category: str
    amount: Decimal
    period: BudgetPeriod = BudgetPeriod.MONTHLY


class BudgetCreate(BudgetBase):
    pass


class BudgetUpdate(BaseModel):
    category: Optional[str] = None
    amount: Optional[Decimal] = None
    period: Optional[BudgetPeriod] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class Budget(BudgetBase):
    id: int
    user_id: str
    start_date: datetime
    end_date: Optional[datetime] = None
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BudgetWithSpend(Budget):
    spent: Decimal
    remaining: Decimal
    percentageUsed: float


# Goals
class GoalBase(BaseModel):
    name: str
    target_amount: Decimal
    current_amount: Decimal = Decimal("0")
    description: Optional[str] = None
    target_date: Optional[datetime] = None
    category: Optional[str] = None


class GoalCreate(GoalBase):
    pass


class GoalUpdate(BaseModel):
    name: Optional[str] = None
    target_amount: Optional[Decimal] = None
    current_amount: Optional[Decimal] = None
    description: Optional[str] = None
    target_date: Optional[datetime] = None
    category: Optional[str] = None


class Goal(GoalBase):
    id: int
    user_id: str
    is_active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GoalWithProgress(Goal):
    progress: float
    remaining: Decimal
    timeRemaining: Optional[str] = None


# Net worth
class NetWorthSnapshot(BaseModel):
    id: Optional[int] = None
    net_worth: Decimal
    total_assets: Decimal
    total_liabilities: Decimal
    date: datetime

    class Config:
        from_attributes = True


class NetWorthOverview(BaseModel):
    current: Optional[NetWorthSnapshot] = None
    history: List[NetWorthSnapshot]


# Analytics
class SpendingTotal(BaseModel):
    spending: Decimal


class CategoryBreakdown(BaseModel):
    category: str
    total: Decimal
    count: int
