"""
Integration tests for the Credit Engine API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from datetime import datetime, timezone
from fastapi.testclient import TestClient

from credit_engine.api import create_app
from credit_engine.api.dependencies import CreditSystem
from credit_engine.config import CreditEngineConfig


NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def system():
    """Credit system over in-memory storage with the scheduler disabled"""
    config = CreditEngineConfig(
        database_url="memory://",
        enable_settlement_scheduler=False,
        _env_file=None
    )
    return CreditSystem(config=config, clock=lambda: NOW)


@pytest.fixture
def client(system):
    with TestClient(create_app(system)) as test_client:
        yield test_client


def open_account(client, balance="1000.00", account_id="acct-1", user_id="user-1"):
    r = client.post("/accounts", json={
        "user_id": user_id,
        "initial_balance": balance,
        "account_id": account_id
    })
    assert r.status_code == 201
    return r.json()


def create_credit(client, amount="1200.00", rate="12", term=12, account_id="acct-1", user_id="user-1"):
    r = client.post("/credits", json={
        "user_id": user_id,
        "account_id": account_id,
        "amount": amount,
        "interest_rate": rate,
        "term_months": term
    })
    assert r.status_code == 201
    return r.json()


class TestHealthEndpoints:
    """Test basic health endpoint"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        data = r.json()
        assert data["status"] == "healthy"
        assert data["scheduler"] == "idle"


class TestCreditFlow:
    """End-to-end credit lifecycle"""

    def test_create_and_get_credit(self, client):
        credit = create_credit(client)

        assert credit["status"] == "active"
        assert credit["monthly_payment"] == {"amount": "106.62", "currency": "USD"}
        assert credit["remaining_amount"]["amount"] == "1200.00"

        r = client.get(f"/credits/{credit['id']}")
        assert r.status_code == 200
        assert r.json()["id"] == credit["id"]

    def test_schedule(self, client):
        credit = create_credit(client)

        r = client.get(f"/credits/{credit['id']}/schedule")
        assert r.status_code == 200
        schedule = r.json()
        assert len(schedule) == 12
        assert schedule[0]["due_date"] == "2024-02-15"
        assert schedule[0]["interest"]["amount"] == "12.00"
        assert schedule[0]["status"] == "pending"

    def test_payment(self, client):
        credit = create_credit(client)

        r = client.post(f"/credits/{credit['id']}/payments", json={"amount": "150.00"})
        assert r.status_code == 200
        data = r.json()
        assert data["credit_status"] == "active"
        assert [a["status"] for a in data["applications"]] == ["paid", "partial"]

    def test_payment_history(self, client):
        open_account(client, balance="1000.00")
        credit = create_credit(client)
        client.post(f"/credits/{credit['id']}/payments", json={"amount": "50.00"})
        client.post("/settlement/run", json={"as_of": "2024-02-15"})

        r = client.get(f"/credits/{credit['id']}/payments")
        assert r.status_code == 200
        payments = r.json()
        assert [p["source"] for p in payments] == ["manual", "settlement"]
        assert payments[0]["amount"] == {"amount": "50.00", "currency": "USD"}
        assert payments[1]["amount"] == {"amount": "56.62", "currency": "USD"}
        assert payments[1]["account_id"] == "acct-1"

        assert client.get("/credits/missing/payments").status_code == 404

    def test_default_and_close(self, client):
        credit = create_credit(client)

        r = client.post(f"/credits/{credit['id']}/close")
        assert r.status_code == 409
        assert r.json()["error"] == "invalid_state"

        r = client.post(f"/credits/{credit['id']}/default", json={"reason": "fraud"})
        assert r.status_code == 200
        assert r.json()["status"] == "defaulted"

        r = client.post(f"/credits/{credit['id']}/close")
        assert r.status_code == 200
        assert r.json()["status"] == "closed"

    def test_user_credits_and_analytics(self, client):
        create_credit(client, amount="1000.00")
        create_credit(client, amount="500.00", rate="6", term=6)

        r = client.get("/users/user-1/credits")
        assert r.status_code == 200
        assert len(r.json()) == 2

        r = client.get("/users/user-1/credit-analytics")
        assert r.status_code == 200
        analytics = r.json()
        assert analytics["credit_count"] == 2
        assert analytics["total_principal"] == "1500.00"
        assert analytics["status_counts"]["active"] == 2
        assert analytics["next_payment_date"] == "2024-02-15"

    def test_overdue(self, client):
        create_credit(client)

        r = client.get("/credits/overdue", params={"as_of": "2024-03-20"})
        assert r.status_code == 200
        assert [inst["sequence_number"] for inst in r.json()] == [1, 2]


class TestErrorMapping:
    """Error kinds map to HTTP status codes"""

    def test_unknown_credit(self, client):
        r = client.get("/credits/missing")
        assert r.status_code == 404
        assert r.json()["error"] == "not_found"

    def test_invalid_credit_amount(self, client):
        r = client.post("/credits", json={
            "user_id": "user-1", "account_id": "acct-1",
            "amount": "-5", "interest_rate": "12", "term_months": 12
        })
        assert r.status_code == 400
        assert r.json()["error"] == "invalid_argument"

    def test_payment_exceeding_outstanding(self, client):
        credit = create_credit(client, amount="100.00", term=1)

        r = client.post(f"/credits/{credit['id']}/payments", json={"amount": "5000"})
        assert r.status_code == 400

    def test_payment_on_completed_credit(self, client):
        credit = create_credit(client, amount="100.00", term=1)
        schedule = client.get(f"/credits/{credit['id']}/schedule").json()
        client.post(f"/credits/{credit['id']}/payments", json={"amount": schedule[0]["amount"]["amount"]})

        r = client.post(f"/credits/{credit['id']}/payments", json={"amount": "1"})
        assert r.status_code == 409
        assert r.json()["error"] == "invalid_state"

    def test_unknown_account(self, client):
        r = client.get("/accounts/missing")
        assert r.status_code == 404


class TestAccountsAndSettlement:
    """Funding accounts and manual settlement runs"""

    def test_account_deposit(self, client):
        open_account(client, balance="10.00")

        r = client.post("/accounts/acct-1/deposit", json={"amount": "5.25"})
        assert r.status_code == 200
        assert r.json()["balance"]["amount"] == "15.25"

    def test_settlement_run(self, client):
        open_account(client, balance="1000.00")
        credit = create_credit(client)

        r = client.post("/settlement/run", json={"as_of": "2024-02-15"})
        assert r.status_code == 200
        assert r.json()["settled"] == 1

        assert client.get("/accounts/acct-1").json()["balance"]["amount"] == "893.38"
        schedule = client.get(f"/credits/{credit['id']}/schedule").json()
        assert schedule[0]["status"] == "paid"

        status = client.get("/settlement/status").json()
        assert status["last_result"]["settled"] == 1

    def test_settlement_run_with_insufficient_funds(self, client):
        open_account(client, balance="50.00")
        create_credit(client)

        r = client.post("/settlement/run", json={"as_of": "2024-02-15"})
        assert r.status_code == 200
        assert r.json()["failed"] == 1
        assert client.get("/accounts/acct-1").json()["balance"]["amount"] == "50.00"
