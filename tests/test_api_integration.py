"""
API Integration Tests

Drives the FastAPI application end-to-end against an in-memory system.
"""

import pytest
from fastapi.testclient import TestClient

from backoffice.api import create_app
from backoffice.config import BackofficeConfig
from backoffice.storage import InMemoryStorage
from backoffice.system import BankingSystem
from backoffice.webhooks import RecordingWebhookNotifier


@pytest.fixture
def system():
    return BankingSystem(
        config=BackofficeConfig(storage_backend="memory", bootstrap_admin_password=""),
        storage=InMemoryStorage(),
        webhooks=RecordingWebhookNotifier()
    )


@pytest.fixture
def client(system):
    return TestClient(create_app(system))


@pytest.fixture
def user(client):
    response = client.post("/users", json={
        "name": "Jean Dupont",
        "email": "jean@example.com",
        "password": "secret123",
        "balance": "500.00"
    })
    assert response.status_code == 201
    return response.json()


class TestHealthAndErrors:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_not_found_body(self, client):
        response = client.get("/transactions/missing")
        assert response.status_code == 404
        assert "missing" in response.json()["error"]

    def test_request_validation_is_400(self, client):
        response = client.post("/transactions", json={"user_id": "U1"})
        assert response.status_code == 400
        assert "error" in response.json()


class TestUsers:

    def test_register_and_login(self, client):
        response = client.post("/users/register", json={
            "name": "Alice Martin",
            "email": "Alice@Example.com",
            "password": "secret123"
        })
        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "alice@example.com"
        assert body["balance"] == "0.00"
        assert "password_hash" not in body
        assert "password_salt" not in body

        response = client.post("/users/login", json={
            "email": "alice@example.com",
            "password": "secret123"
        })
        assert response.status_code == 200
        view = response.json()
        assert view["user"]["id"] == body["id"]
        assert [n["title"] for n in view["notifications"]] == ["Welcome"]

    def test_bad_login(self, client, user):
        response = client.post("/users/login", json={
            "email": "jean@example.com",
            "password": "wrong-password"
        })
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid credentials"}

    def test_duplicate_email_conflicts(self, client, user):
        response = client.post("/users/register", json={
            "name": "Other Jean",
            "email": "JEAN@example.com",
            "password": "secret123"
        })
        assert response.status_code == 409

    def test_invalid_registration(self, client):
        response = client.post("/users/register", json={
            "name": "Bob",
            "email": "not-an-email",
            "password": "secret123"
        })
        assert response.status_code == 400

    def test_beneficiaries_in_account_view(self, client, user):
        response = client.post(f"/users/{user['id']}/beneficiaries", json={
            "name": "Paul Durand",
            "account_number": "FR76 3000 4000 5000",
            "bank_name": "Banque Alpha"
        })
        assert response.status_code == 201

        view = client.get(f"/users/{user['id']}").json()
        assert view["beneficiaries"][0]["name"] == "Paul Durand"

    def test_status_change(self, client, user):
        response = client.patch(f"/users/{user['id']}/status", json={"status": "SUSPENDED"})
        assert response.status_code == 200
        assert response.json()["user"]["status"] == "SUSPENDED"

        response = client.patch(f"/users/{user['id']}/status", json={"status": "FROZEN"})
        assert response.status_code == 400

    def test_balance_override_writes_no_transaction(self, client, system, user):
        response = client.put(f"/users/{user['id']}/balance", json={"balance": "1234.50"})
        assert response.status_code == 200
        assert response.json()["balance"] == "1234.50"

        view = client.get(f"/users/{user['id']}").json()
        assert view["transactions"] == []
        assert system.webhooks.event_types() == ["balance.overridden"]

    def test_adjustment_appears_in_history(self, client, user):
        response = client.post(f"/users/{user['id']}/adjustments", json={"amount": "-50"})
        assert response.status_code == 201
        transaction = response.json()
        assert transaction["status"] == "COMPLETED"
        assert transaction["transaction_type"] == "WITHDRAWAL"

        view = client.get(f"/users/{user['id']}").json()
        assert view["user"]["balance"] == "450.00"
        assert view["transactions"][0]["id"] == transaction["id"]

    def test_list_users_by_role(self, client, user):
        response = client.get("/users", params={"role": "USER"})
        assert [u["id"] for u in response.json()["users"]] == [user["id"]]
        assert client.get("/users", params={"role": "ADMIN"}).json()["users"] == []


class TestTransactions:

    def test_reject_reverses_balance(self, client, user):
        response = client.post("/transactions/withdraw", json={
            "user_id": user["id"],
            "amount": "100"
        })
        assert response.status_code == 201
        transaction = response.json()
        assert transaction["amount"] == "-100.00"
        assert transaction["status"] == "PENDING"

        pending = client.get("/transactions/pending").json()["transactions"]
        assert pending[0]["user_name"] == "Jean Dupont"

        response = client.patch(f"/transactions/{transaction['id']}", json={
            "status": "REJECTED",
            "admin_reason": "Suspicious"
        })
        assert response.status_code == 200
        body = response.json()
        assert body["refunded"] is True
        assert body["transaction"]["admin_reason"] == "Suspicious"

        assert client.get(f"/users/{user['id']}").json()["user"]["balance"] == "500.00"

    def test_second_decision_conflicts(self, client, user):
        transaction = client.post("/transactions/deposit", json={
            "user_id": user["id"],
            "amount": "25"
        }).json()
        client.patch(f"/transactions/{transaction['id']}", json={"status": "COMPLETED"})

        response = client.patch(f"/transactions/{transaction['id']}", json={"status": "REJECTED"})
        assert response.status_code == 409
        assert "error" in response.json()
        assert client.get(f"/users/{user['id']}").json()["user"]["balance"] == "525.00"

    def test_pending_is_not_a_decision(self, client, user):
        transaction = client.post("/transactions/deposit", json={
            "user_id": user["id"],
            "amount": "25"
        }).json()
        response = client.patch(f"/transactions/{transaction['id']}", json={"status": "PENDING"})
        assert response.status_code == 400

    def test_insufficient_funds(self, client, user):
        response = client.post("/transactions/transfer", json={
            "user_id": user["id"],
            "amount": "5000",
            "counterparty": "FR76 1111"
        })
        assert response.status_code == 400

    def test_signed_create(self, client, user):
        response = client.post("/transactions", json={
            "user_id": user["id"],
            "amount": "-20",
            "type": "PAYMENT",
            "description": "Groceries"
        })
        assert response.status_code == 201
        assert client.get(f"/users/{user['id']}").json()["user"]["balance"] == "480.00"

    def test_deposit_instructions_raise_alert(self, client, user):
        transaction = client.post("/transactions/deposit", json={
            "user_id": user["id"],
            "amount": "200"
        }).json()

        response = client.post(f"/transactions/{transaction['id']}/deposit-instructions", json={
            "payment_link": "https://pay.example.com/abc",
            "admin_message": "Please wire the funds"
        })
        assert response.status_code == 200
        assert response.json()["transaction"]["payment_link"] == "https://pay.example.com/abc"

        alerts = client.get(f"/notifications/users/{user['id']}/alerts").json()["alerts"]
        assert len(alerts) == 1
        assert "https://pay.example.com/abc" in alerts[0]["message"]

        response = client.patch(f"/notifications/{alerts[0]['id']}/read")
        assert response.json()["notification"]["read"] is True
        assert client.get(f"/notifications/users/{user['id']}/alerts").json()["alerts"] == []


class TestLoans:

    def test_approval_disburses(self, client, user):
        response = client.post("/loans", json={
            "user_id": user["id"],
            "amount": "1000",
            "purpose": "Car"
        })
        assert response.status_code == 201
        loan = response.json()
        assert loan["status"] == "PENDING"
        assert loan["user_name"] == "Jean Dupont"

        response = client.patch(f"/loans/{loan['id']}", json={"status": "APPROVED"})
        assert response.status_code == 200
        body = response.json()
        assert body["loan"]["status"] == "APPROVED"
        assert body["disbursement"]["status"] == "COMPLETED"
        assert body["loan"]["disbursement_transaction_id"] == body["disbursement"]["id"]

        assert client.get(f"/users/{user['id']}").json()["user"]["balance"] == "1500.00"

        response = client.patch(f"/loans/{loan['id']}", json={"status": "REJECTED"})
        assert response.status_code == 409

    def test_rejection_and_listing(self, client, user):
        loan = client.post("/loans", json={"user_id": user["id"], "amount": "300"}).json()

        response = client.patch(f"/loans/{loan['id']}", json={
            "status": "REJECTED",
            "admin_reason": "Income too low"
        })
        assert response.json()["disbursement"] is None
        assert client.get("/loans", params={"status": "REJECTED"}).json()["loans"][0]["id"] == loan["id"]
        assert client.get("/loans", params={"status": "PENDING"}).json()["loans"] == []

    def test_invalid_decision(self, client, user):
        loan = client.post("/loans", json={"user_id": user["id"], "amount": "300"}).json()
        response = client.patch(f"/loans/{loan['id']}", json={"status": "MAYBE"})
        assert response.status_code == 400


class TestInstitutionRequests:

    def test_request_and_approve(self, client, user):
        response = client.post("/institution-requests", json={
            "user_id": user["id"],
            "requested_institution": "Banque Beta"
        })
        assert response.status_code == 201
        change_request = response.json()

        response = client.patch(f"/institution-requests/{change_request['id']}", json={
            "status": "APPROVED"
        })
        assert response.json()["request"]["status"] == "APPROVED"
        view = client.get(f"/users/{user['id']}").json()
        assert view["user"]["financial_institution"] == "Banque Beta"


class TestNotifications:

    def test_send_and_feed(self, client, user):
        response = client.post("/notifications", json={
            "user_id": user["id"],
            "title": "Maintenance",
            "message": "Tonight at 22:00",
            "type": "warning"
        })
        assert response.status_code == 201

        feed = client.get(f"/notifications/users/{user['id']}").json()
        assert feed["notifications"][0]["title"] == "Maintenance"
        assert feed["unread_count"] == 1

    def test_unknown_type_and_user(self, client, user):
        response = client.post("/notifications", json={
            "user_id": user["id"],
            "title": "Hello",
            "type": "shout"
        })
        assert response.status_code == 400

        response = client.post("/notifications", json={"user_id": "missing", "title": "Hello"})
        assert response.status_code == 404

    def test_broadcast(self, client, user):
        client.post("/users", json={
            "name": "Claire Petit",
            "email": "claire@example.com",
            "password": "secret123"
        })
        response = client.post("/notifications/broadcast", json={"title": "New rates"})
        assert response.status_code == 201
        assert response.json()["count"] == 2
