# smmpanel/services/catalog.py
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from smmpanel.errors import InvalidInput, ServiceNotFound
from smmpanel.models import Service, ServiceStatus
from smmpanel.services.ledger import clamp_limit


def _check_bounds(min_order: int, max_order: int) -> None:
    if min_order > max_order:
        raise InvalidInput(f"min_order ({min_order}) cannot exceed max_order ({max_order})")


def create_service(db: Session, **fields) -> Service:
    _check_bounds(fields["min_order"], fields["max_order"])
    with db.begin():
        service = Service(**fields)
        db.add(service)
    return service


def get_service(db: Session, service_id: int) -> Service:
    service = db.get(Service, service_id)
    if service is None:
        raise ServiceNotFound(service_id)
    return service


def list_services(
    db: Session,
    status: Optional[ServiceStatus] = None,
    category: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
) -> Tuple[List[Service], int]:
    conditions = []
    if status is not None:
        conditions.append(Service.status == status)
    if category:
        conditions.append(Service.category == category)

    rows = db.execute(
        select(Service)
        .where(*conditions)
        .order_by(Service.category, Service.id)
        .limit(clamp_limit(limit))
        .offset(max(offset, 0))
    ).scalars().all()
    total = db.scalar(select(func.count()).select_from(Service).where(*conditions))
    return list(rows), int(total or 0)


def update_service(db: Session, service_id: int, changes: dict) -> Service:
    with db.begin():
        service = db.get(Service, service_id)
        if service is None:
            raise ServiceNotFound(service_id)
        _check_bounds(changes.get("min_order", service.min_order), changes.get("max_order", service.max_order))
        for field, value in changes.items():
            setattr(service, field, value)
    return service
