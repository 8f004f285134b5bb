# smmpanel/services/ledger.py
"""Ledger Store: append-only entries plus the balance projection on `accounts`.

`append_entry` is the only code that writes `accounts.balance_cents`. It must
run inside an open transaction and, for anything that can race, inside
`guard.run` for the same account, so that reading balance_before and writing
balance_after form one serialized step.
"""
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from smmpanel.config import settings
from smmpanel.errors import AccountNotFound, InsufficientFunds, InvalidInput
from smmpanel.metrics import insufficient_funds_total, ledger_entries_total
from smmpanel.models import Account, EntryKind, LedgerEntry
from smmpanel.money import from_cents, to_cents
from smmpanel.services.guard import guard

logger = logging.getLogger(__name__)


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return settings.page_size_default
    return min(limit, settings.page_size_max)


def lock_account(db: Session, account_id: int) -> Account:
    account = db.execute(
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if account is None:
        raise AccountNotFound(account_id)
    return account


def append_entry(
    db: Session,
    account_id: int,
    kind: EntryKind,
    amount_cents: int,
    description: str,
    order_id: Optional[int] = None,
) -> LedgerEntry:
    if amount_cents == 0:
        raise InvalidInput("amount cannot be zero")

    account = lock_account(db, account_id)
    before = account.balance_cents
    after = before + amount_cents
    if after < 0:
        insufficient_funds_total.inc()
        logger.warning(
            "Insufficient funds on account %s: balance %s, %s requires %s",
            account_id, before, kind.value, -amount_cents,
        )
        raise InsufficientFunds(from_cents(before), from_cents(-amount_cents))

    entry = LedgerEntry(
        account_id=account_id,
        kind=kind,
        amount_cents=amount_cents,
        balance_before_cents=before,
        balance_after_cents=after,
        description=description,
        order_id=order_id,
    )
    account.balance_cents = after
    db.add(entry)
    # flush here so a version conflict shows up inside the caller's unit
    db.flush()
    ledger_entries_total.labels(kind.value).inc()
    return entry


def get_balance(db: Session, account_id: int) -> Decimal:
    cents = db.scalar(select(Account.balance_cents).where(Account.id == account_id))
    if cents is None:
        raise AccountNotFound(account_id)
    return from_cents(cents)


def list_entries(
    db: Session,
    account_id: int,
    kind: Optional[EntryKind] = None,
    order_id: Optional[int] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[LedgerEntry], int]:
    """Entries newest first, with the total count for pagination."""
    if db.get(Account, account_id) is None:
        raise AccountNotFound(account_id)

    conditions = [LedgerEntry.account_id == account_id]
    if kind is not None:
        conditions.append(LedgerEntry.kind == kind)
    if order_id is not None:
        conditions.append(LedgerEntry.order_id == order_id)

    rows = db.execute(
        select(LedgerEntry)
        .where(*conditions)
        .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        .limit(clamp_limit(limit))
        .offset(max(offset, 0))
    ).scalars().all()
    total = db.scalar(select(func.count()).select_from(LedgerEntry).where(*conditions))
    return list(rows), int(total or 0)


def entries_for_order(db: Session, order_id: int) -> List[LedgerEntry]:
    return list(db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.order_id == order_id)
        .order_by(LedgerEntry.created_at, LedgerEntry.id)
    ).scalars().all())


def summarize(db: Session, account_id: int) -> dict:
    """Credit/debit totals; credits - debits equals the projected balance."""
    balance = get_balance(db, account_id)
    totals = db.execute(
        select(
            func.coalesce(func.sum(case((LedgerEntry.amount_cents > 0, LedgerEntry.amount_cents), else_=0)), 0).label("credits"),
            func.coalesce(func.sum(case((LedgerEntry.amount_cents < 0, -LedgerEntry.amount_cents), else_=0)), 0).label("debits"),
            func.count(LedgerEntry.id).label("entries"),
        ).where(LedgerEntry.account_id == account_id)
    ).one()
    return {
        "account_id": account_id,
        "total_credits": from_cents(int(totals.credits or 0)),
        "total_debits": from_cents(int(totals.debits or 0)),
        "entry_count": int(totals.entries or 0),
        "balance": balance,
    }


def deposit(db: Session, account_id: int, amount: Decimal, description: Optional[str] = None) -> LedgerEntry:
    cents = to_cents(amount)
    if cents <= 0:
        raise InvalidInput("deposit amount must be positive")

    def unit() -> LedgerEntry:
        with db.begin():
            return append_entry(
                db, account_id, EntryKind.DEPOSIT, cents,
                description or f"Deposit of ${from_cents(cents)}",
            )

    entry = guard.run(db, account_id, unit)
    logger.info("Deposit %s cents to account %s (entry %s)", cents, account_id, entry.id)
    return entry


def adjust(db: Session, account_id: int, amount: Decimal, description: Optional[str] = None) -> LedgerEntry:
    """Administrative credit (amount > 0) or debit (amount < 0)."""
    cents = to_cents(amount)
    if cents == 0:
        raise InvalidInput("amount cannot be zero")
    if not description:
        description = "Admin added funds" if cents > 0 else "Admin deducted funds"

    def unit() -> LedgerEntry:
        with db.begin():
            return append_entry(db, account_id, EntryKind.ADMIN_ADJUSTMENT, cents, description)

    entry = guard.run(db, account_id, unit)
    logger.info("Admin adjustment %s cents on account %s (entry %s)", cents, account_id, entry.id)
    return entry
