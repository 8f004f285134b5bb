# tests/test_refunds.py
from decimal import Decimal


def _place(client, account, service, quantity=1000):
    r = client.post("/orders", json={
        "account_id": account["id"], "service_id": service["id"],
        "link": "https://instagram.com/p/abc", "quantity": quantity,
    })
    assert r.status_code == 201, r.text
    return r.json()


def test_refund_is_applied_once(client, make_account, make_service, balance):
    account = make_account(deposit="100.00")
    service = make_service(rate="2.50")
    order = _place(client, account, service)
    assert Decimal(balance(account["id"])) == Decimal("97.50")

    r1 = client.post(f"/orders/{order['id']}/refund", json={"actor": "admin@example.com"})
    assert r1.status_code == 200, r1.text
    body = r1.json()
    assert body["order"]["status"] == "REFUNDED"
    assert body["ledger_entry"]["kind"] == "REFUND"
    assert Decimal(body["ledger_entry"]["amount"]) == Decimal("2.50")
    assert body["ledger_entry"]["description"] == f"Refund for order #{order['id']} by admin@example.com"
    assert Decimal(balance(account["id"])) == Decimal("100.00")

    # second attempt does not re-credit
    r2 = client.post(f"/orders/{order['id']}/refund")
    assert r2.status_code == 409
    assert r2.json()["code"] == "ALREADY_REFUNDED"
    assert Decimal(balance(account["id"])) == Decimal("100.00")

    rows = client.get(f"/orders/{order['id']}/ledger").json()
    assert [x["kind"] for x in rows] == ["ORDER_CHARGE", "REFUND"]
    assert sum(Decimal(x["amount"]) for x in rows) == 0


def test_refund_while_processing(client, make_account, make_service, balance):
    account = make_account(deposit="10.00")
    service = make_service(rate="4.00")
    order = _place(client, account, service, quantity=500)
    client.patch(f"/orders/{order['id']}", json={"status": "PROCESSING"})

    r = client.post(f"/orders/{order['id']}/refund")
    assert r.status_code == 200
    assert Decimal(balance(account["id"])) == Decimal("10.00")


def test_completed_order_cannot_be_refunded(client, make_account, make_service, balance):
    account = make_account(deposit="10.00")
    service = make_service()
    order = _place(client, account, service)
    client.patch(f"/orders/{order['id']}", json={"status": "PROCESSING"})
    client.patch(f"/orders/{order['id']}", json={"status": "COMPLETED"})

    r = client.post(f"/orders/{order['id']}/refund")
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_STATE"
    assert Decimal(balance(account["id"])) == Decimal("7.50")


def test_partial_order_cannot_be_refunded(client, make_account, make_service, balance):
    account = make_account(deposit="10.00")
    service = make_service()
    order = _place(client, account, service)
    client.patch(f"/orders/{order['id']}", json={"status": "PROCESSING"})
    client.patch(f"/orders/{order['id']}", json={"status": "PARTIAL", "remains": 300})

    r = client.post(f"/orders/{order['id']}/refund")
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_STATE"
    assert Decimal(balance(account["id"])) == Decimal("7.50")
    assert client.get(f"/orders/{order['id']}").json()["status"] == "PARTIAL"


def test_cancel_returns_funds_and_blocks_refund(client, make_account, make_service, balance):
    account = make_account(deposit="10.00")
    service = make_service()
    order = _place(client, account, service)

    r = client.post(f"/orders/{order['id']}/cancel")
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "CANCELLED"
    assert Decimal(balance(account["id"])) == Decimal("10.00")

    r = client.post(f"/orders/{order['id']}/refund")
    assert r.status_code == 409
    assert r.json()["code"] == "ALREADY_REFUNDED"
    assert Decimal(balance(account["id"])) == Decimal("10.00")


def test_only_pending_orders_can_be_cancelled(client, make_account, make_service):
    account = make_account(deposit="10.00")
    service = make_service()
    order = _place(client, account, service)
    client.patch(f"/orders/{order['id']}", json={"status": "PROCESSING"})

    r = client.post(f"/orders/{order['id']}/cancel")
    assert r.status_code == 409
    assert r.json()["code"] == "INVALID_STATE"


def test_refund_unknown_order(client):
    r = client.post("/orders/424242/refund")
    assert r.status_code == 404
    assert r.json()["code"] == "ORDER_NOT_FOUND"
