# smmpanel/services/settlement.py
from time import perf_counter
import logging
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from smmpanel.errors import (
    AccountInactive, AccountNotFound, AlreadyRefunded, InvalidQuantity,
    InvalidState, OrderNotFound, ServiceInactive, ServiceNotFound
)
from smmpanel.metrics import order_latency, orders_placed_total, refund_latency, refunds_total
from smmpanel.models import (
    Account, AccountStatus, EntryKind, LedgerEntry, Order, OrderStatus,
    Service, ServiceStatus
)
from smmpanel.money import compute_charge
from smmpanel.services.guard import guard
from smmpanel.services.ledger import append_entry, clamp_limit

logger = logging.getLogger(__name__)

# Provider-driven progress; settlement statuses are reached only through
# refund_order / cancel_order.
PROGRESS_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING},
    OrderStatus.PROCESSING: {OrderStatus.COMPLETED, OrderStatus.PARTIAL},
}
REFUNDABLE = {OrderStatus.PENDING, OrderStatus.PROCESSING}
CANCELLABLE = {OrderStatus.PENDING}
CREDITED = {OrderStatus.REFUNDED, OrderStatus.CANCELLED}


def place_order(db: Session, account_id: int, service_id: int, link: str, quantity: int) -> Order:
    """
    Charge-on-create, as one atomic unit serialized on the account:
      - validate account, service and quantity bounds
      - insert the order (PENDING) to get its id
      - append the ORDER_CHARGE entry referencing it
    If the append fails (InsufficientFunds, conflicts) the transaction rolls
    back and no order row is left behind.
    """
    start = perf_counter()
    link = link.strip()

    def unit() -> Order:
        with db.begin():
            account = db.get(Account, account_id)
            if account is None:
                raise AccountNotFound(account_id)
            if account.status != AccountStatus.ACTIVE:
                raise AccountInactive(account_id, account.status.value)

            service = db.get(Service, service_id)
            if service is None:
                raise ServiceNotFound(service_id)
            if service.status != ServiceStatus.ACTIVE:
                raise ServiceInactive(service_id)
            if not (service.min_order <= quantity <= service.max_order):
                raise InvalidQuantity(quantity, service.min_order, service.max_order)

            charge_cents = compute_charge(quantity, service.rate)
            if charge_cents <= 0:
                raise InvalidQuantity(
                    quantity, service.min_order, service.max_order,
                    reason=f"quantity {quantity} is too small to charge at rate {service.rate} per 1000",
                )

            order = Order(
                account_id=account_id,
                service_id=service_id,
                link=link,
                quantity=quantity,
                charge_cents=charge_cents,
                status=OrderStatus.PENDING,
            )
            db.add(order)
            db.flush()

            append_entry(
                db, account_id, EntryKind.ORDER_CHARGE, -order.charge_cents,
                f"Order #{order.id} - {service.name}", order_id=order.id,
            )
        return order

    try:
        order = guard.run(db, account_id, unit)
    finally:
        order_latency.observe(perf_counter() - start)

    orders_placed_total.inc()
    logger.info(
        "Order %s placed: account %s, service %s, quantity %s, charge %s cents",
        order.id, account_id, service_id, quantity, order.charge_cents,
    )
    return order


def _order_account(db: Session, order_id: int) -> int:
    with db.begin():
        account_id = db.scalar(select(Order.account_id).where(Order.id == order_id))
    if account_id is None:
        raise OrderNotFound(order_id)
    return account_id


def _lock_order(db: Session, order_id: int) -> Order:
    order = db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if order is None:
        raise OrderNotFound(order_id)
    return order


def _credit_back(
    db: Session,
    order_id: int,
    allowed: set,
    final_status: OrderStatus,
    description: str,
    kind: str,
) -> LedgerEntry:
    start = perf_counter()
    account_id = _order_account(db, order_id)

    def unit() -> LedgerEntry:
        with db.begin():
            order = _lock_order(db, order_id)
            if order.status in CREDITED:
                raise AlreadyRefunded(order.id)
            if order.status not in allowed:
                raise InvalidState(
                    f"Order #{order.id} is {order.status.value}; "
                    f"{kind} requires one of {', '.join(sorted(s.value for s in allowed))}"
                )
            entry = append_entry(
                db, order.account_id, EntryKind.REFUND, order.charge_cents,
                description, order_id=order.id,
            )
            order.status = final_status
        return entry

    try:
        entry = guard.run(db, account_id, unit)
    finally:
        refund_latency.observe(perf_counter() - start)

    refunds_total.labels(kind).inc()
    return entry


def refund_order(db: Session, order_id: int, actor: Optional[str] = None) -> LedgerEntry:
    """Credit the order's charge back and mark it REFUNDED (PENDING/PROCESSING only, once)."""
    description = f"Refund for order #{order_id}"
    if actor:
        description += f" by {actor}"
    entry = _credit_back(db, order_id, REFUNDABLE, OrderStatus.REFUNDED, description, "refund")
    logger.info("Order %s refunded by %s: %s cents credited", order_id, actor or "system", entry.amount_cents)
    return entry


def cancel_order(db: Session, order_id: int, actor: Optional[str] = None) -> LedgerEntry:
    """Cancel a PENDING order; the charge is returned through the same REFUND entry."""
    description = f"Refund for cancelled order #{order_id}"
    if actor:
        description += f" by {actor}"
    entry = _credit_back(db, order_id, CANCELLABLE, OrderStatus.CANCELLED, description, "cancel")
    logger.info("Order %s cancelled by %s: %s cents credited", order_id, actor or "system", entry.amount_cents)
    return entry


def update_progress(
    db: Session,
    order_id: int,
    status: Optional[OrderStatus] = None,
    start_count: Optional[int] = None,
    remains: Optional[int] = None,
    provider_order_id: Optional[str] = None,
) -> Order:
    """Record provider progress. Never touches the ledger."""
    with db.begin():
        order = _lock_order(db, order_id)
        if status is not None and status != order.status:
            if status not in PROGRESS_TRANSITIONS.get(order.status, set()):
                raise InvalidState(f"Order #{order.id} cannot move from {order.status.value} to {status.value}")
            order.status = status
        if start_count is not None:
            order.start_count = start_count
        if remains is not None:
            if remains > order.quantity:
                raise InvalidState(f"remains {remains} exceeds ordered quantity {order.quantity}")
            order.remains = remains
        if provider_order_id is not None:
            order.provider_order_id = provider_order_id.strip()
    return order


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


def list_orders(
    db: Session,
    account_id: Optional[int] = None,
    service_id: Optional[int] = None,
    status: Optional[OrderStatus] = None,
    search: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Order], int]:
    conditions = []
    if account_id is not None:
        conditions.append(Order.account_id == account_id)
    if service_id is not None:
        conditions.append(Order.service_id == service_id)
    if status is not None:
        conditions.append(Order.status == status)
    if search:
        conditions.append(Order.link.contains(search, autoescape=True))

    rows = db.execute(
        select(Order)
        .where(*conditions)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(clamp_limit(limit))
        .offset(max(offset, 0))
    ).scalars().all()
    total = db.scalar(select(func.count()).select_from(Order).where(*conditions))
    return list(rows), int(total or 0)
