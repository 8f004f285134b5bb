# smmpanel/services/accounts.py
"""Account directory: identity fields only.

Balance is owned by the ledger; nothing here reads it for writing or accepts it.
"""
from typing import List, Optional, Tuple

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from smmpanel.errors import AccountNotFound, DuplicateEmail, InvalidInput
from smmpanel.models import Account, AccountRole, AccountStatus
from smmpanel.services.ledger import clamp_limit

UPDATABLE_FIELDS = ("name", "email", "role", "status")


def _email_taken(db: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    stmt = select(Account.id).where(func.lower(Account.email) == email.lower())
    if exclude_id is not None:
        stmt = stmt.where(Account.id != exclude_id)
    return db.scalar(stmt) is not None


def create_account(db: Session, email: str, name: str, role: AccountRole = AccountRole.USER) -> Account:
    email = email.strip().lower()
    try:
        with db.begin():
            if _email_taken(db, email):
                raise DuplicateEmail(email)
            account = Account(email=email, name=name.strip(), role=role, status=AccountStatus.ACTIVE, balance_cents=0)
            db.add(account)
    except IntegrityError as e:
        raise DuplicateEmail(email) from e
    return account


def get_account(db: Session, account_id: int) -> Account:
    account = db.get(Account, account_id)
    if account is None:
        raise AccountNotFound(account_id)
    return account


def list_accounts(
    db: Session,
    role: Optional[AccountRole] = None,
    status: Optional[AccountStatus] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Account], int]:
    conditions = []
    if role is not None:
        conditions.append(Account.role == role)
    if status is not None:
        conditions.append(Account.status == status)
    if search:
        conditions.append(or_(
            Account.name.contains(search, autoescape=True),
            Account.email.contains(search, autoescape=True),
        ))

    rows = db.execute(
        select(Account)
        .where(*conditions)
        .order_by(Account.created_at.desc(), Account.id.desc())
        .limit(clamp_limit(limit))
        .offset(max(offset, 0))
    ).scalars().all()
    total = db.scalar(select(func.count()).select_from(Account).where(*conditions))
    return list(rows), int(total or 0)


def update_account(db: Session, account_id: int, changes: dict) -> Account:
    unknown = set(changes) - set(UPDATABLE_FIELDS)
    if unknown:
        # balance in particular: it only moves through ledger entries
        raise InvalidInput(f"Account fields not updatable here: {', '.join(sorted(unknown))}")
    try:
        with db.begin():
            account = db.get(Account, account_id)
            if account is None:
                raise AccountNotFound(account_id)
            if "email" in changes:
                email = changes["email"].strip().lower()
                if _email_taken(db, email, exclude_id=account_id):
                    raise DuplicateEmail(email)
                changes = {**changes, "email": email}
            for field, value in changes.items():
                setattr(account, field, value)
    except IntegrityError as e:
        raise DuplicateEmail(changes.get("email", "")) from e
    return account
