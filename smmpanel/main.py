import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from smmpanel.config import settings
from smmpanel.db import engine, SessionLocal, ping_db
from smmpanel.errors import InvalidInput, PanelError
from smmpanel.metrics import metrics_asgi_app
from smmpanel.models import (
    AccountRole, AccountStatus, Base, EntryKind, OrderStatus, ServiceStatus
)
from smmpanel.schemas import (
    AccountCreate, AccountOut, AccountPage, AccountUpdate, AdjustmentCreate,
    BalanceOut, DepositCreate, LedgerEntryOut, LedgerPage, LedgerSummaryOut,
    OrderCreate, OrderOut, OrderPage, OrderProgress, RefundRequest,
    ServiceCreate, ServiceOut, ServicePage, ServiceUpdate, SettlementOut
)
from smmpanel.services import accounts, catalog, ledger, settlement
from smmpanel.services.idempotency import run_idempotent
from smmpanel.services.ledger import clamp_limit

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # runs once at startup
    Base.metadata.create_all(bind=engine)
    logger.info("Schema ready on %s", engine.url.render_as_string(hide_password=True))
    yield

app = FastAPI(title=settings.app_name, lifespan=lifespan)


app.mount("/metrics", metrics_asgi_app)


@app.exception_handler(PanelError)
async def panel_error_handler(_: Request, exc: PanelError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    detail = exc.errors()
    message = detail[0].get("msg", "Invalid request") if detail else "Invalid request"
    if detail and detail[0].get("loc"):
        message = f"{'.'.join(str(p) for p in detail[0]['loc'])}: {message}"
    api_error = InvalidInput(message)
    return JSONResponse(status_code=api_error.status_code, content=api_error.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(_: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "code": "INTERNAL_ERROR"},
    )


@app.get("/")
def root():
    return {"service": "smmpanel", "docs": "/docs"}

@app.get("/healthz")
def healthz():
    try:
        ping_db()
        return {"ok": True, "db": "up"}
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        return {"ok": False, "db": "down"}

# --- accounts ---------------------------------------------------------------

@app.post("/accounts", response_model=AccountOut, status_code=status.HTTP_201_CREATED, tags=["accounts"])
def create_account(payload: AccountCreate):
    with SessionLocal() as db:
        account = accounts.create_account(db, payload.email, payload.name, payload.role)
        return AccountOut.from_row(account)

@app.get("/accounts", response_model=AccountPage, tags=["accounts"])
def list_accounts(
    role: Optional[AccountRole] = None,
    account_status: Optional[AccountStatus] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
):
    with SessionLocal() as db:
        rows, total = accounts.list_accounts(db, role, account_status, search, limit, offset)
        return AccountPage(
            items=[AccountOut.from_row(r) for r in rows],
            total_count=total, limit=clamp_limit(limit), offset=offset,
        )

@app.get("/accounts/{account_id}", response_model=AccountOut, tags=["accounts"])
def get_account(account_id: int):
    with SessionLocal() as db:
        return AccountOut.from_row(accounts.get_account(db, account_id))

@app.patch("/accounts/{account_id}", response_model=AccountOut, tags=["accounts"])
def update_account(account_id: int, payload: AccountUpdate):
    with SessionLocal() as db:
        account = accounts.update_account(db, account_id, payload.model_dump(exclude_unset=True, exclude_none=True))
        return AccountOut.from_row(account)

# --- wallet -------------------------------------------------------------------

@app.get("/accounts/{account_id}/balance", response_model=BalanceOut, tags=["wallet"])
def get_balance(account_id: int):
    with SessionLocal() as db:
        return BalanceOut(account_id=account_id, balance=ledger.get_balance(db, account_id), currency=settings.currency)

@app.get("/accounts/{account_id}/ledger", response_model=LedgerPage, tags=["wallet"])
def list_ledger(
    account_id: int,
    kind: Optional[EntryKind] = None,
    order_id: Optional[int] = None,
    limit: Optional[int] = None,
    offset: int = 0,
):
    with SessionLocal() as db:
        rows, total = ledger.list_entries(db, account_id, kind, order_id, limit, offset)
        return LedgerPage(
            account_id=account_id,
            entries=[LedgerEntryOut.from_row(r) for r in rows],
            total_count=total, limit=clamp_limit(limit), offset=offset,
            balance=ledger.get_balance(db, account_id),
        )

@app.get("/accounts/{account_id}/ledger/summary", response_model=LedgerSummaryOut, tags=["wallet"])
def ledger_summary(account_id: int):
    with SessionLocal() as db:
        return ledger.summarize(db, account_id)

@app.post("/accounts/{account_id}/deposits", response_model=LedgerEntryOut, status_code=status.HTTP_201_CREATED, tags=["wallet"])
def deposit(account_id: int, payload: DepositCreate):
    with SessionLocal() as db:
        return LedgerEntryOut.from_row(ledger.deposit(db, account_id, payload.amount, payload.description))

@app.post("/accounts/{account_id}/adjustments", response_model=LedgerEntryOut, status_code=status.HTTP_201_CREATED, tags=["wallet"])
def adjust_balance(account_id: int, payload: AdjustmentCreate):
    with SessionLocal() as db:
        return LedgerEntryOut.from_row(ledger.adjust(db, account_id, payload.amount, payload.description))

# --- service catalog ------------------------------------------------------------

@app.post("/services", response_model=ServiceOut, status_code=status.HTTP_201_CREATED, tags=["services"])
def create_service(payload: ServiceCreate):
    with SessionLocal() as db:
        return catalog.create_service(db, **payload.model_dump())

@app.get("/services", response_model=ServicePage, tags=["services"])
def list_services(
    service_status: Optional[ServiceStatus] = Query(default=None, alias="status"),
    category: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
):
    with SessionLocal() as db:
        rows, total = catalog.list_services(db, service_status, category, limit, offset)
        return ServicePage(
            items=[ServiceOut.model_validate(r) for r in rows],
            total_count=total, limit=clamp_limit(limit), offset=offset,
        )

@app.get("/services/{service_id}", response_model=ServiceOut, tags=["services"])
def get_service(service_id: int):
    with SessionLocal() as db:
        return catalog.get_service(db, service_id)

@app.patch("/services/{service_id}", response_model=ServiceOut, tags=["services"])
def update_service(service_id: int, payload: ServiceUpdate):
    with SessionLocal() as db:
        return catalog.update_service(db, service_id, payload.model_dump(exclude_unset=True, exclude_none=True))

# --- orders -------------------------------------------------------------------

@app.post("/orders", status_code=status.HTTP_201_CREATED, tags=["orders"])
def place_order(payload: OrderCreate, idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key")):
    with SessionLocal() as db:
        def handler():
            order = settlement.place_order(db, payload.account_id, payload.service_id, payload.link, payload.quantity)
            return (201, OrderOut.from_row(order).model_dump(mode="json"))

        if not idempotency_key:
            status_code, body = handler()
        else:
            fingerprint = f"POST:/orders:{payload.model_dump_json()}"
            status_code, body = run_idempotent(db, idempotency_key, fingerprint, "orders", handler)
        return JSONResponse(status_code=status_code, content=body)

@app.get("/orders", response_model=OrderPage, tags=["orders"])
def list_orders(
    account_id: Optional[int] = None,
    service_id: Optional[int] = None,
    order_status: Optional[OrderStatus] = Query(default=None, alias="status"),
    search: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
):
    with SessionLocal() as db:
        rows, total = settlement.list_orders(db, account_id, service_id, order_status, search, limit, offset)
        return OrderPage(
            items=[OrderOut.from_row(r) for r in rows],
            total_count=total, limit=clamp_limit(limit), offset=offset,
        )

@app.get("/orders/{order_id}", response_model=OrderOut, tags=["orders"])
def get_order(order_id: int):
    with SessionLocal() as db:
        return OrderOut.from_row(settlement.get_order(db, order_id))

@app.patch("/orders/{order_id}", response_model=OrderOut, tags=["orders"])
def update_order(order_id: int, payload: OrderProgress):
    with SessionLocal() as db:
        order = settlement.update_progress(
            db, order_id,
            status=OrderStatus(payload.status) if payload.status else None,
            start_count=payload.start_count,
            remains=payload.remains,
            provider_order_id=payload.provider_order_id,
        )
        return OrderOut.from_row(order)

@app.get("/orders/{order_id}/ledger", response_model=list[LedgerEntryOut], tags=["orders"])
def get_order_ledger(order_id: int):
    with SessionLocal() as db:
        settlement.get_order(db, order_id)
        return [LedgerEntryOut.from_row(r) for r in ledger.entries_for_order(db, order_id)]

@app.post("/orders/{order_id}/refund", response_model=SettlementOut, tags=["orders"])
def refund_order(order_id: int, payload: Optional[RefundRequest] = None):
    with SessionLocal() as db:
        entry = settlement.refund_order(db, order_id, payload.actor if payload else None)
        return SettlementOut(
            order=OrderOut.from_row(settlement.get_order(db, order_id)),
            ledger_entry=LedgerEntryOut.from_row(entry),
        )

@app.post("/orders/{order_id}/cancel", response_model=SettlementOut, tags=["orders"])
def cancel_order(order_id: int, payload: Optional[RefundRequest] = None):
    with SessionLocal() as db:
        entry = settlement.cancel_order(db, order_id, payload.actor if payload else None)
        return SettlementOut(
            order=OrderOut.from_row(settlement.get_order(db, order_id)),
            ledger_entry=LedgerEntryOut.from_row(entry),
        )
