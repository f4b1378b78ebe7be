import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cache import ReadThroughCache
from database import Base
from main import app, current_user, get_cache, get_db


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    cache = ReadThroughCache()

    def override_db():
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[current_user] = lambda: 1
    yield TestClient(app)
    app.dependency_overrides.clear()


def setup_ledger(client):
    account = client.post(
        "/api/v1/accounts",
        json={"name": "Checking", "bank": "Bank", "initial_balance": 0},
    )
    savings = client.post(
        "/api/v1/accounts", json={"name": "Savings", "bank": "Bank"}
    )
    category = client.post(
        "/api/v1/categories", json={"name": "Food", "kind": "expense"}
    )
    assert account.status_code == 201
    return account.json()["id"], savings.json()["id"], category.json()["id"]


def balances(client) -> dict:
    accounts = client.get("/api/v1/accounts").json()
    return {a["id"]: a["computed_balance"] for a in accounts}


def test_movement_lifecycle_over_http(client) -> None:
    checking, savings, food = setup_ledger(client)

    created = client.post(
        "/api/v1/movements",
        json={
            "date": "2025-03-10",
            "description": "Groceries",
            "kind": "expense",
            "category_id": food,
            "payment_method": "debit",
            "amount": 1000,
            "notes": "weekly",
            "origin_account_id": checking,
        },
    )
    assert created.status_code == 201
    movement_id = created.json()["id"]
    assert balances(client)[checking] == -1000

    patched = client.patch(
        f"/api/v1/movements/{movement_id}", json={"amount": 500, "notes": None}
    )
    assert patched.status_code == 200
    body = client.get(f"/api/v1/movements/{movement_id}").json()
    assert body["amount"] == 500
    assert body["notes"] is None
    assert body["description"] == "Groceries"
    assert body["reconciliation_month"] == "2025-03"
    assert balances(client)[checking] == -500

    transfer = client.post(
        "/api/v1/movements",
        json={
            "date": "2025-03-11",
            "description": "Move to savings",
            "kind": "transfer",
            "category_id": food,
            "payment_method": "transfer",
            "amount": 2000,
            "origin_account_id": checking,
            "destination_account_id": savings,
        },
    )
    assert balances(client) == {checking: -2500, savings: 2000}

    deleted = client.delete(f"/api/v1/movements/{transfer.json()['id']}")
    assert deleted.status_code == 200
    assert balances(client) == {checking: -500, savings: 0}


def test_error_reasons_map_to_status_codes(client) -> None:
    checking, _, food = setup_ledger(client)

    assert client.get("/api/v1/movements/999").status_code == 404
    assert client.delete("/api/v1/movements/999").status_code == 404
    assert (
        client.post(
            "/api/v1/categories", json={"name": "Food", "kind": "expense"}
        ).status_code
        == 409
    )
    client.post(
        "/api/v1/movements",
        json={
            "date": "2025-03-10",
            "description": "Lunch",
            "kind": "expense",
            "category_id": food,
            "payment_method": "cash",
            "amount": 10,
            "origin_account_id": checking,
        },
    )
    assert client.delete(f"/api/v1/accounts/{checking}").status_code == 409
    assert (
        client.patch(f"/api/v1/accounts/{checking}", json={"name": None}).status_code
        == 422
    )
    assert client.get("/api/v1/movements?period=someday").status_code == 400


def test_dashboard_and_import(client) -> None:
    checking, _, _ = setup_ledger(client)

    imported = client.post(
        f"/api/v1/import?account_id={checking}",
        content="date,description,amount\n2025-03-01,Salary,50000\n",
        headers={"Content-Type": "text/csv"},
    )
    assert imported.status_code == 200
    assert imported.json() == {"created": 1, "errors": []}

    dashboard = client.get("/api/v1/dashboard").json()
    assert dashboard["total_balance"] == 50000
    assert len(dashboard["movements"]) == 1
    assert len(dashboard["monthly_series"]) == 6

    missing = client.post(
        "/api/v1/import?account_id=999", content="date,description,amount\n"
    )
    assert missing.status_code == 404


def test_movement_list_filters_by_category(client) -> None:
    checking, _, food = setup_ledger(client)
    other = client.post(
        "/api/v1/categories", json={"name": "Bus", "kind": "expense"}
    ).json()["id"]
    for category_id in (food, other, other):
        client.post(
            "/api/v1/movements",
            json={
                "date": "2025-03-10",
                "description": "Item",
                "kind": "expense",
                "category_id": category_id,
                "payment_method": "debit",
                "amount": 5,
                "origin_account_id": checking,
            },
        )

    everything = client.get("/api/v1/movements").json()
    buses = client.get(f"/api/v1/movements?category_id={other}").json()
    custom = client.get(
        "/api/v1/movements?period=custom&start=2025-03-01&end=2025-03-31"
    ).json()

    assert len(everything) == 3
    assert len(buses) == 2
    assert len(custom) == 3


def test_patch_cannot_make_a_transfer_one_sided(client) -> None:
    checking, savings, food = setup_ledger(client)
    transfer = client.post(
        "/api/v1/movements",
        json={
            "date": "2025-03-11",
            "description": "Move to savings",
            "kind": "transfer",
            "category_id": food,
            "payment_method": "transfer",
            "amount": 1000,
            "origin_account_id": checking,
            "destination_account_id": savings,
        },
    ).json()["id"]
    spent = client.post(
        "/api/v1/movements",
        json={
            "date": "2025-03-12",
            "description": "Snack",
            "kind": "expense",
            "category_id": food,
            "payment_method": "cash",
            "amount": 50,
            "origin_account_id": checking,
        },
    ).json()["id"]

    cleared = client.patch(
        f"/api/v1/movements/{transfer}", json={"destination_account_id": None}
    )
    promoted = client.patch(f"/api/v1/movements/{spent}", json={"kind": "transfer"})

    assert cleared.status_code == 400
    assert promoted.status_code == 400
    assert balances(client) == {checking: -1050, savings: 1000}
