# smmpanel/models.py
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    CheckConstraint, Column, DateTime, Enum, ForeignKey, Index, Integer,
    Numeric, String, Text, JSON, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

class AccountRole(str, enum.Enum):
    USER = "USER"
    ADMIN = "ADMIN"

class AccountStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    BANNED = "BANNED"

class ServiceStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"

class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PARTIAL = "PARTIAL"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"

class EntryKind(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    ORDER_CHARGE = "ORDER_CHARGE"
    REFUND = "REFUND"
    ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"

def now_utc():
    return datetime.now(timezone.utc)

class Account(Base):
    __tablename__ = "accounts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    role = Column(Enum(AccountRole), nullable=False, default=AccountRole.USER)
    status = Column(Enum(AccountStatus), nullable=False, default=AccountStatus.ACTIVE)
    # Written only by smmpanel.services.ledger.append_entry
    balance_cents = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        CheckConstraint("balance_cents >= 0", name="accounts_balance_nonneg"),
    )
    __mapper_args__ = {"version_id_col": version}

    orders = relationship("Order", back_populates="account")
    ledger_entries = relationship("LedgerEntry", back_populates="account")

class Service(Base):
    __tablename__ = "services"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    category = Column(String(100), nullable=False)
    type = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    # price per 1000 units
    rate = Column(Numeric(12, 4), nullable=False)
    min_order = Column(Integer, nullable=False)
    max_order = Column(Integer, nullable=False)
    status = Column(Enum(ServiceStatus), nullable=False, default=ServiceStatus.ACTIVE)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        CheckConstraint("rate > 0", name="services_rate_positive"),
        CheckConstraint("min_order > 0 AND min_order <= max_order", name="services_order_bounds"),
    )

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False, index=True)
    service_id = Column(Integer, ForeignKey("services.id"), nullable=False, index=True)
    link = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False)
    charge_cents = Column(Integer, nullable=False)
    start_count = Column(Integer, nullable=True)
    remains = Column(Integer, nullable=True)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    provider_order_id = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=now_utc, onupdate=now_utc)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="orders_quantity_positive"),
        CheckConstraint("charge_cents > 0", name="orders_charge_positive"),
    )

    account = relationship("Account", back_populates="orders")
    service = relationship("Service")
    ledger_entries = relationship("LedgerEntry", back_populates="order")

class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    account_id = Column(Integer, ForeignKey("accounts.id"), nullable=False)
    kind = Column(Enum(EntryKind), nullable=False)
    amount_cents = Column(Integer, nullable=False)  # signed: credits > 0, debits < 0
    balance_before_cents = Column(Integer, nullable=False)
    balance_after_cents = Column(Integer, nullable=False)
    description = Column(Text, nullable=False)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)

    account = relationship("Account", back_populates="ledger_entries")
    order = relationship("Order", back_populates="ledger_entries")

    __table_args__ = (
        CheckConstraint("amount_cents <> 0", name="ledger_amount_nonzero"),
        CheckConstraint("balance_after_cents = balance_before_cents + amount_cents", name="ledger_balance_chain"),
        CheckConstraint("balance_after_cents >= 0", name="ledger_balance_nonneg"),
        # at most one ORDER_CHARGE and one REFUND per order (NULL order_id rows are distinct)
        UniqueConstraint("order_id", "kind", name="ledger_one_kind_per_order"),
        Index("ix_ledger_account_created", "account_id", "created_at"),
    )

class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    key = Column(String, primary_key=True)
    request_fingerprint = Column(String, nullable=True)
    status_code = Column(Integer, nullable=True)
    response_body = Column(JSON, nullable=True)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=now_utc)
