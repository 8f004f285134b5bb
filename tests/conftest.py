# tests/conftest.py
import os
import tempfile

import pytest
from fastapi.testclient import TestClient

# SQLite file by default; export DATABASE_URL to run against Postgres instead
os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), 'smmpanel_test.db')}",
)

from smmpanel.main import app  # noqa
from smmpanel.db import engine  # noqa
from smmpanel.models import Base  # noqa

@pytest.fixture(autouse=True)
def create_schema_and_clean_db():
    # Ensure tables exist (startup also does this, but be explicit for tests)
    Base.metadata.create_all(bind=engine)
    # Empty every table between tests so they don't interfere
    with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())
    yield

@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c

@pytest.fixture
def make_account(client):
    counter = {"n": 0}

    def _make(deposit=None, **fields):
        counter["n"] += 1
        body = {"email": f"user{counter['n']}@example.com", "name": f"User {counter['n']}"}
        body.update(fields)
        r = client.post("/accounts", json=body)
        assert r.status_code == 201, r.text
        account = r.json()
        if deposit is not None:
            d = client.post(f"/accounts/{account['id']}/deposits", json={"amount": deposit})
            assert d.status_code == 201, d.text
        return account

    return _make

@pytest.fixture
def make_service(client):
    def _make(**fields):
        body = {
            "name": "Instagram Followers",
            "category": "Instagram",
            "type": "followers",
            "rate": "2.50",
            "min_order": 100,
            "max_order": 100000,
        }
        body.update(fields)
        r = client.post("/services", json=body)
        assert r.status_code == 201, r.text
        return r.json()

    return _make

def balance_of(client, account_id):
    r = client.get(f"/accounts/{account_id}/balance")
    assert r.status_code == 200, r.text
    return r.json()["balance"]

@pytest.fixture
def balance(client):
    return lambda account_id: balance_of(client, account_id)
