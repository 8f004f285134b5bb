from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from smmpanel.models import (
    AccountRole, AccountStatus, EntryKind, OrderStatus, ServiceStatus
)
from smmpanel.money import from_cents

# Money in and out of the API: decimals with at most 2 places
Money = Decimal

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

# --- accounts -------------------------------------------------------------

class AccountCreate(BaseModel):
    # extra="forbid": a `balance` field is rejected, never silently applied
    model_config = ConfigDict(extra="forbid")

    email: str = Field(..., max_length=255, pattern=EMAIL_PATTERN)
    name: str = Field(..., min_length=1, max_length=255)
    role: AccountRole = AccountRole.USER

class AccountUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    role: Optional[AccountRole] = None
    status: Optional[AccountStatus] = None

class AccountOut(BaseModel):
    id: int
    email: str
    name: str
    role: AccountRole
    status: AccountStatus
    balance: Money
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "AccountOut":
        return cls(
            id=row.id, email=row.email, name=row.name, role=row.role, status=row.status,
            balance=from_cents(row.balance_cents), created_at=row.created_at, updated_at=row.updated_at,
        )

class AccountPage(BaseModel):
    items: List[AccountOut]
    total_count: int
    limit: int
    offset: int

class BalanceOut(BaseModel):
    account_id: int
    balance: Money
    currency: str

# --- service catalog --------------------------------------------------------

class ServiceCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=255)
    category: str = Field(..., min_length=1, max_length=100)
    type: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    rate: Decimal = Field(..., gt=0, max_digits=12, decimal_places=4, description="Price per 1000 units")
    min_order: int = Field(..., gt=0)
    max_order: int = Field(..., gt=0)
    status: ServiceStatus = ServiceStatus.ACTIVE

class ServiceUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    rate: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=4)
    min_order: Optional[int] = Field(default=None, gt=0)
    max_order: Optional[int] = Field(default=None, gt=0)
    status: Optional[ServiceStatus] = None

class ServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: str
    type: str
    description: Optional[str] = None
    rate: Decimal
    min_order: int
    max_order: int
    status: ServiceStatus

class ServicePage(BaseModel):
    items: List[ServiceOut]
    total_count: int
    limit: int
    offset: int

# --- ledger -------------------------------------------------------------------

class MoneyMovement(BaseModel):
    amount: Decimal = Field(..., max_digits=14, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=500)

class DepositCreate(MoneyMovement):
    amount: Decimal = Field(..., gt=0, max_digits=14, decimal_places=2)

class AdjustmentCreate(MoneyMovement):
    """Signed: positive credits the account, negative debits it."""

class LedgerEntryOut(BaseModel):
    id: int
    account_id: int
    kind: EntryKind
    amount: Money
    balance_before: Money
    balance_after: Money
    description: str
    order_id: Optional[int] = None
    created_at: datetime

    @classmethod
    def from_row(cls, row) -> "LedgerEntryOut":
        return cls(
            id=row.id, account_id=row.account_id, kind=row.kind,
            amount=from_cents(row.amount_cents),
            balance_before=from_cents(row.balance_before_cents),
            balance_after=from_cents(row.balance_after_cents),
            description=row.description, order_id=row.order_id, created_at=row.created_at,
        )

class LedgerPage(BaseModel):
    account_id: int
    entries: List[LedgerEntryOut]
    total_count: int
    limit: int
    offset: int
    balance: Money

class LedgerSummaryOut(BaseModel):
    account_id: int
    total_credits: Money
    total_debits: Money
    entry_count: int
    balance: Money

# --- orders -------------------------------------------------------------------

class OrderCreate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    account_id: int = Field(..., gt=0)
    service_id: int = Field(..., gt=0)
    link: str = Field(..., min_length=1, max_length=2048)
    quantity: int = Field(..., gt=0)

class OrderProgress(BaseModel):
    """Provider-driven updates; REFUNDED/CANCELLED go through their own endpoints."""
    model_config = ConfigDict(extra="forbid")

    status: Optional[Literal["PROCESSING", "COMPLETED", "PARTIAL"]] = None
    start_count: Optional[int] = Field(default=None, ge=0)
    remains: Optional[int] = Field(default=None, ge=0)
    provider_order_id: Optional[str] = Field(default=None, max_length=255)

class RefundRequest(BaseModel):
    actor: Optional[str] = Field(default=None, max_length=255)

class OrderOut(BaseModel):
    id: int
    account_id: int
    service_id: int
    link: str
    quantity: int
    charge: Money
    status: OrderStatus
    start_count: Optional[int] = None
    remains: Optional[int] = None
    provider_order_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "OrderOut":
        return cls(
            id=row.id, account_id=row.account_id, service_id=row.service_id, link=row.link,
            quantity=row.quantity, charge=from_cents(row.charge_cents), status=row.status,
            start_count=row.start_count, remains=row.remains,
            provider_order_id=row.provider_order_id,
            created_at=row.created_at, updated_at=row.updated_at,
        )

class OrderPage(BaseModel):
    items: List[OrderOut]
    total_count: int
    limit: int
    offset: int

class SettlementOut(BaseModel):
    order: OrderOut
    ledger_entry: LedgerEntryOut
