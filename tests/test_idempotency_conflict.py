# tests/test_idempotency_conflict.py
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from smmpanel.db import SessionLocal
from smmpanel.models import IdempotencyKey
from smmpanel.schemas import OrderCreate


def _order_body(account, service, quantity=1000):
    return {
        "account_id": account["id"], "service_id": service["id"],
        "link": "https://instagram.com/someone", "quantity": quantity,
    }


def test_same_key_replays_without_second_charge(client, make_account, make_service, balance):
    account = make_account(deposit="10.00")
    service = make_service(rate="2.50")

    r1 = client.post("/orders", json=_order_body(account, service), headers={"Idempotency-Key": "abc"})
    assert r1.status_code == 201
    r2 = client.post("/orders", json=_order_body(account, service), headers={"Idempotency-Key": "abc"})
    assert r2.status_code == 201
    assert r2.json() == r1.json()

    assert client.get("/orders", params={"account_id": account["id"]}).json()["total_count"] == 1
    assert Decimal(balance(account["id"])) == Decimal("7.50")


def test_reusing_key_for_different_order_returns_409(client, make_account, make_service):
    account = make_account(deposit="10.00")
    service = make_service()

    r1 = client.post("/orders", json=_order_body(account, service), headers={"Idempotency-Key": "abc"})
    assert r1.status_code == 201

    r2 = client.post("/orders", json=_order_body(account, service, 2000), headers={"Idempotency-Key": "abc"})
    assert r2.status_code == 409
    assert r2.json()["code"] == "IDEMPOTENCY_CONFLICT"
    assert "different request" in r2.json()["error"]


def test_rejected_order_does_not_burn_the_key(client, make_account, make_service):
    account = make_account(deposit="1.00")
    service = make_service(rate="2.50")

    r1 = client.post("/orders", json=_order_body(account, service), headers={"Idempotency-Key": "k1"})
    assert r1.status_code == 402

    client.post(f"/accounts/{account['id']}/deposits", json={"amount": "5.00"})
    r2 = client.post("/orders", json=_order_body(account, service), headers={"Idempotency-Key": "k1"})
    assert r2.status_code == 201


def test_key_still_in_flight_returns_425(client, make_account, make_service, balance):
    account = make_account(deposit="10.00")
    service = make_service(rate="2.50")
    body = _order_body(account, service)

    # an earlier request with this key and payload has not finished yet
    with SessionLocal() as db:
        db.add(IdempotencyKey(
            key="busy",
            request_fingerprint=f"POST:/orders:{OrderCreate(**body).model_dump_json()}",
            locked_until=datetime.now(timezone.utc) + timedelta(minutes=5),
        ))
        db.commit()

    r = client.post("/orders", json=body, headers={"Idempotency-Key": "busy"})
    assert r.status_code == 425
    assert r.json()["code"] == "REQUEST_IN_FLIGHT"

    assert client.get("/orders", params={"account_id": account["id"]}).json()["total_count"] == 0
    assert Decimal(balance(account["id"])) == Decimal("10.00")
