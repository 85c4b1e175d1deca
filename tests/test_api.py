import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from main import app, get_db


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # Not used as a context manager so the alert scheduler stays off.
    yield TestClient(app)
    app.dependency_overrides.clear()


def register(client: TestClient, email: str) -> dict[str, str]:
    resp = client.post(
        "/api/auth/signup",
        json={"name": "Ann", "email": email, "password": "secret1"},
    )
    assert resp.status_code == 201
    return {"Authorization": f"Bearer {resp.json()['token']}"}


def test_health(client: TestClient) -> None:
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "OK"


def test_auth_errors_use_message_envelope(client: TestClient) -> None:
    resp = client.get("/api/accounts")
    assert resp.status_code == 401
    assert resp.json() == {"message": "Not authorized, no token"}

    resp = client.get("/api/accounts", headers={"Authorization": "Bearer bogus"})
    assert resp.status_code == 401

    register(client, "ann@example.com")
    resp = client.post(
        "/api/auth/login", json={"email": "ann@example.com", "password": "nope12"}
    )
    assert resp.status_code == 401
    assert resp.json() == {"message": "Invalid credentials"}

    resp = client.post(
        "/api/auth/signup",
        json={"name": "Ann", "email": "ann@example.com", "password": "secret1"},
    )
    assert resp.status_code == 400
    assert resp.json() == {"message": "User already exists"}


def test_profile_never_exposes_password(client: TestClient) -> None:
    headers = register(client, "ann@example.com")

    resp = client.get("/api/user/profile", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["email"] == "ann@example.com"
    assert "password" not in body
    assert "passwordHash" not in body


def test_forgot_password_answers_the_same_for_unknown_email(client: TestClient) -> None:
    register(client, "ann@example.com")
    known = client.post("/api/auth/forgot-password", json={"email": "ann@example.com"})
    unknown = client.post("/api/auth/forgot-password", json={"email": "x@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.json() == unknown.json()


def test_account_transfer_flow(client: TestClient) -> None:
    headers = register(client, "ann@example.com")
    cash = client.post(
        "/api/accounts", json={"name": "Cash", "type": "cash", "balance": 100},
        headers=headers,
    ).json()
    bank = client.post(
        "/api/accounts", json={"name": "Bank", "type": "checking", "balance": 0},
        headers=headers,
    ).json()
    assert cash["isDefault"] is True
    assert bank["isDefault"] is False

    resp = client.post(
        "/api/accounts/transfer",
        json={"from": cash["id"], "to": bank["id"], "amount": 40},
        headers=headers,
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["fromAccount"]["balance"] == 60
    assert body["toAccount"]["balance"] == 40

    resp = client.post(
        "/api/accounts/transfer",
        json={"from": cash["id"], "to": bank["id"], "amount": 61},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json() == {"message": "Insufficient balance"}

    resp = client.post(
        "/api/accounts/transfer",
        json={"from": cash["id"], "to": bank["id"], "amount": -5},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("amount")

    transfers = client.get("/api/accounts/transfers", headers=headers).json()
    assert len(transfers) == 1
    assert transfers[0]["amount"] == 40


def test_records_of_other_users_are_not_found(client: TestClient) -> None:
    ann = register(client, "ann@example.com")
    bob = register(client, "bob@example.com")
    account = client.post(
        "/api/accounts", json={"name": "Cash", "type": "cash"}, headers=ann
    ).json()

    resp = client.get(f"/api/accounts/{account['id']}", headers=bob)
    assert resp.status_code == 404
    assert resp.json() == {"message": "Account not found"}

    resp = client.delete(f"/api/accounts/{account['id']}", headers=bob)
    assert resp.status_code == 404
    assert client.get("/api/accounts", headers=bob).json() == []


def test_transaction_patch_rejects_unknown_fields(client: TestClient) -> None:
    headers = register(client, "ann@example.com")
    txn = client.post(
        "/api/transactions",
        json={
            "type": "expense",
            "category": "Food",
            "subcategory": "Lunch",
            "amount": 12.5,
            "paymentMode": "Card",
            "payee": "Cafe",
            "account": "Cash",
            "date": "2026-01-10",
        },
        headers=headers,
    ).json()
    assert txn["amount"] == 12.5

    resp = client.put(
        f"/api/transactions/{txn['id']}",
        json={"id": 999, "user": 5, "payee": "Bistro"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["id"] == txn["id"]
    assert resp.json()["payee"] == "Bistro"

    resp = client.put(
        f"/api/transactions/{txn['id']}", json={"createdAt": "x"}, headers=headers
    )
    assert resp.status_code == 400

    listed = client.get(
        "/api/transactions?type=expense&startDate=2026-01-01&endDate=2026-01-31",
        headers=headers,
    ).json()
    assert [row["id"] for row in listed] == [txn["id"]]


def test_budget_end_date_progress_and_alerts(client: TestClient) -> None:
    headers = register(client, "ann@example.com")
    budget = client.post(
        "/api/budgets",
        json={
            "category": "Food",
            "amount": 200,
            "startDate": "2026-01-31",
            "endDate": "2030-01-01",
            "alerts": {"enabled": True, "threshold": 80},
        },
        headers=headers,
    ).json()
    assert budget["endDate"] == "2026-02-28"

    client.post(
        "/api/transactions",
        json={
            "type": "expense",
            "category": "Food",
            "subcategory": "Groceries",
            "amount": 170,
            "paymentMode": "Card",
            "payee": "Market",
            "account": "Cash",
            "date": "2026-02-10",
        },
        headers=headers,
    )

    listed = client.get("/api/budgets?isActive=true", headers=headers).json()
    assert listed[0]["spent"] == 170
    assert listed[0]["remaining"] == 30
    assert listed[0]["percentage"] == 85
    assert listed[0]["shouldAlert"] is True

    alerts = client.get("/api/budgets/alerts/check", headers=headers).json()["alerts"]
    assert [a["budgetId"] for a in alerts] == [budget["id"]]
    assert alerts[0]["message"] == "You've spent 85.0% of your Food budget"

    assert client.get("/api/budgets?isActive=false", headers=headers).json() == []


def test_dashboard_stats(client: TestClient) -> None:
    headers = register(client, "ann@example.com")
    rows = (("income", "Salary", 500), ("expense", "Rent", 200))
    for txn_type, category, amount in rows:
        client.post(
            "/api/transactions",
            json={
                "type": txn_type,
                "category": category,
                "subcategory": "Misc",
                "amount": amount,
                "paymentMode": "Bank",
                "payee": "Someone",
                "account": "Bank",
                "date": "2026-01-15",
            },
            headers=headers,
        )

    resp = client.get(
        "/api/dashboard/stats?startDate=2026-01-01&endDate=2026-01-31", headers=headers
    )
    assert resp.status_code == 200
    stats = resp.json()
    assert stats["summary"] == {"totalIncome": 500, "totalExpense": 200, "balance": 300}
    assert stats["incomeVsExpense"] == [{"month": "Jan", "income": 500, "expense": 200}]

    resp = client.get(
        "/api/dashboard/stats?startDate=2026-02-01&endDate=2026-01-01", headers=headers
    )
    assert resp.status_code == 400


def test_oversized_amounts_are_rejected(client: TestClient) -> None:
    headers = register(client, "ann@example.com")

    resp = client.post(
        "/api/transactions",
        json={
            "type": "expense",
            "category": "Food",
            "subcategory": "Lunch",
            "amount": "100000000000000000000",
            "paymentMode": "Card",
            "payee": "Cafe",
            "account": "Cash",
        },
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("amount")

    resp = client.post(
        "/api/accounts",
        json={"name": "Cash", "type": "cash", "balance": "1e20"},
        headers=headers,
    )
    assert resp.status_code == 400
    assert resp.json()["message"].startswith("balance")

    resp = client.post(
        "/api/budgets", json={"category": "Food", "amount": 1e15}, headers=headers
    )
    assert resp.status_code == 400
    assert client.get("/api/accounts", headers=headers).json() == []
