# tests/test_accounts.py
from decimal import Decimal


def test_new_account_starts_at_zero(client):
    r = client.post("/accounts", json={"email": "Buyer@Example.com", "name": "Buyer"})
    assert r.status_code == 201
    account = r.json()
    assert account["email"] == "buyer@example.com"
    assert account["role"] == "USER" and account["status"] == "ACTIVE"
    assert Decimal(account["balance"]) == Decimal("0.00")


def test_balance_cannot_be_written_through_account_directory(client, make_account, balance):
    r = client.post("/accounts", json={"email": "rich@example.com", "name": "Rich", "balance": 1000})
    assert r.status_code == 422
    assert r.json()["code"] == "INVALID_INPUT"

    account = make_account(deposit="5.00")
    r = client.patch(f"/accounts/{account['id']}", json={"balance": 1000})
    assert r.status_code == 422
    assert Decimal(balance(account["id"])) == Decimal("5.00")


def test_update_identity_fields(client, make_account):
    account = make_account()
    r = client.patch(f"/accounts/{account['id']}", json={"name": "Renamed", "role": "ADMIN"})
    assert r.status_code == 200
    assert r.json()["name"] == "Renamed" and r.json()["role"] == "ADMIN"

    admins = client.get("/accounts", params={"role": "ADMIN"}).json()
    assert [a["id"] for a in admins["items"]] == [account["id"]]
    assert client.get("/accounts", params={"search": "Renamed"}).json()["total_count"] == 1
    assert client.get("/accounts", params={"search": "Ren_med"}).json()["total_count"] == 0
    assert client.get("/accounts", params={"search": "%"}).json()["total_count"] == 0


def test_duplicate_email(client, make_account):
    first = make_account(email="taken@example.com")
    second = make_account(email="free@example.com")

    r = client.post("/accounts", json={"email": "TAKEN@example.com", "name": "Other"})
    assert r.status_code == 409 and r.json()["code"] == "DUPLICATE_EMAIL"

    r = client.patch(f"/accounts/{second['id']}", json={"email": "taken@example.com"})
    assert r.status_code == 409
    assert client.patch(f"/accounts/{first['id']}", json={"email": "taken@example.com"}).status_code == 200


def test_service_catalog(client, make_service):
    service = make_service(category="YouTube", name="YouTube Views", rate="0.90")
    make_service(category="Instagram", status="INACTIVE")

    assert client.get("/services", params={"status": "ACTIVE"}).json()["total_count"] == 1
    assert client.get("/services", params={"category": "YouTube"}).json()["items"][0]["id"] == service["id"]

    r = client.patch(f"/services/{service['id']}", json={"min_order": 500000})
    assert r.status_code == 422 and r.json()["code"] == "INVALID_INPUT"

    r = client.post("/services", json={
        "name": "Bad", "category": "X", "type": "likes", "rate": "1.00", "min_order": 10, "max_order": 5,
    })
    assert r.status_code == 422

    assert client.get("/services/123456").json()["code"] == "SERVICE_NOT_FOUND"
