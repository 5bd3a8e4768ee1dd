"""
Integration tests for the Wallet Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import pytest
from fastapi.testclient import TestClient

from wallet_ledger.api import create_app, LedgerSystem
from wallet_ledger.api.transactions import TRANSFER_ID_ATTEMPTS
from wallet_ledger.config import LedgerConfig
from wallet_ledger.storage import InMemoryStorage


@pytest.fixture
def system():
    """Ledger system over in-memory storage with two registered accounts"""
    system = LedgerSystem(LedgerConfig(database_url="memory://", storage_timeout_seconds=5.0))
    system.account_directory.register("U1")
    system.account_directory.register("U2")
    yield system
    system.close()


@pytest.fixture
def client(system):
    """Create a test client bound to the test system"""
    return TestClient(create_app(system))


def create_payload(**overrides):
    payload = {
        "from": "U1",
        "to": "U2",
        "amount": "50.00",
        "type": "sent",
        "transactionId": "tx001",
    }
    payload.update(overrides)
    return payload


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"
        assert r.json()["service"] == "wallet_ledger"

    def test_root(self, client):
        r = client.get("/")
        assert r.status_code == 200
        data = r.json()
        assert data["name"] == "Wallet Ledger API"
        assert "transactions" in data["endpoints"]


class TestAccountEndpoints:
    """Account directory endpoints"""

    def test_register_and_list(self, client):
        r = client.post("/accounts", json={"account_id": " U3 "})
        assert r.status_code == 201
        assert r.json()["account_id"] == "U3"

        r = client.get("/accounts")
        assert r.json()["accounts"] == ["U1", "U2", "U3"]

    def test_register_blank_rejected(self, client):
        r = client.post("/accounts", json={"account_id": "  "})
        assert r.status_code == 400


class TestTransactionEndpoints:
    """Create, look up and update ledger entries"""

    def test_create_transaction(self, client):
        r = client.post("/transactions", json=create_payload(note="rent"))

        assert r.status_code == 201
        data = r.json()["transaction"]
        assert data["transactionId"] == "TX001"
        assert data["amount"] == "50.00"
        assert data["status"] == "pending"
        assert data["note"] == "rent"
        assert data["fee"] == "0"
        assert data["createdAt"] == data["updatedAt"]

    def test_numeric_amount_accepted(self, client):
        r = client.post("/transactions", json=create_payload(amount=12.5))
        assert r.status_code == 201
        assert r.json()["transaction"]["amount"] == "12.5"

    def test_validation_error_reports_field(self, client):
        r = client.post("/transactions", json=create_payload(amount="0"))

        assert r.status_code == 400
        assert r.json()["detail"] == {"field": "amount", "reason": "amount below minimum of 0.01"}

    def test_note_too_long(self, client):
        r = client.post("/transactions", json=create_payload(note="n" * 201))
        assert r.status_code == 400
        assert r.json()["detail"]["field"] == "note"

    def test_unknown_account(self, client):
        r = client.post("/transactions", json=create_payload(to="GHOST"))
        assert r.status_code == 400
        assert r.json()["detail"]["field"] == "to"

    def test_duplicate_transaction_id(self, client):
        assert client.post("/transactions", json=create_payload(transactionId="abc123")).status_code == 201

        r = client.post("/transactions", json=create_payload(transactionId="ABC123"))

        assert r.status_code == 400
        assert r.json()["detail"] == {"field": "transactionId", "reason": "duplicate transactionId"}

    def test_get_transaction_case_insensitive(self, client):
        client.post("/transactions", json=create_payload())

        r = client.get("/transactions/tx001")
        assert r.status_code == 200
        assert r.json()["transaction"]["transactionId"] == "TX001"

        assert client.get("/transactions/none").status_code == 404

    def test_get_transaction_by_internal_id(self, client):
        created = client.post("/transactions", json=create_payload()).json()["transaction"]

        r = client.get(f"/transactions/id/{created['id']}")
        assert r.status_code == 200
        assert r.json()["transaction"] == created

        assert client.get("/transactions/id/no-such-id").status_code == 404

    def test_update_status(self, client):
        client.post("/transactions", json=create_payload())

        r = client.patch("/transactions/TX001/status", json={"status": "completed"})
        assert r.status_code == 200
        assert r.json()["transaction"]["status"] == "completed"

        r = client.patch("/transactions/TX001/status", json={"status": "pending"})
        assert r.status_code == 400
        assert r.json()["detail"]["field"] == "status"

        r = client.patch("/transactions/NOPE/status", json={"status": "completed"})
        assert r.status_code == 404

    def test_find_by_status(self, client):
        client.post("/transactions", json=create_payload(transactionId="a"))
        client.post("/transactions", json=create_payload(transactionId="b"))
        client.patch("/transactions/a/status", json={"status": "failed"})

        r = client.get("/transactions/status/failed")
        assert r.status_code == 200
        assert [t["transactionId"] for t in r.json()["transactions"]] == ["A"]

        assert client.get("/transactions/status/unknown").status_code == 400


class TestTransferEndpoint:
    """Transfers generate their transactionId and fee"""

    def test_transfer(self, client):
        r = client.post("/transactions/transfer", json={"from": "U1", "to": "U2", "amount": "100.00"})

        assert r.status_code == 201
        data = r.json()
        assert data["transaction"]["transactionId"].startswith("TXN")
        assert data["transaction"]["type"] == "sent"
        assert data["transaction"]["fee"] == "1.00"
        assert data["totalDebit"] == "101.00"

    def test_transfer_redraws_colliding_id(self, client, system, monkeypatch):
        client.post("/transactions", json=create_payload(transactionId="TXNTAKEN"))
        ids = iter(["TXNTAKEN", "TXNTAKEN", "TXNFRESH"])
        monkeypatch.setattr(system.ledger, "generate_transaction_id", lambda: next(ids))

        r = client.post("/transactions/transfer", json={"from": "U1", "to": "U2", "amount": "10.00"})

        assert r.status_code == 201
        assert r.json()["transaction"]["transactionId"] == "TXNFRESH"

    def test_transfer_gives_up_after_repeated_collisions(self, client, system, monkeypatch):
        client.post("/transactions", json=create_payload(transactionId="TXNTAKEN"))
        calls = []

        def always_taken():
            calls.append(1)
            return "TXNTAKEN"

        monkeypatch.setattr(system.ledger, "generate_transaction_id", always_taken)

        r = client.post("/transactions/transfer", json={"from": "U1", "to": "U2", "amount": "10.00"})

        assert r.status_code == 400
        assert r.json()["detail"]["field"] == "transactionId"
        assert len(calls) == TRANSFER_ID_ATTEMPTS

    def test_transfer_invalid_amount(self, client):
        r = client.post("/transactions/transfer", json={"from": "U1", "to": "U2", "amount": "-5"})
        assert r.status_code == 400
        assert r.json()["detail"]["field"] == "amount"

    def test_transfer_same_account(self, client):
        r = client.post("/transactions/transfer", json={"from": "U1", "to": "U1", "amount": "10.00"})
        assert r.status_code == 400
        assert r.json()["detail"]["field"] == "to"


class TestHistoryEndpoints:
    """History listing and CSV export"""

    def test_history_pagination(self, client):
        for i in range(12):
            client.post("/transactions", json=create_payload(transactionId=f"t{i}"))

        r = client.get("/transactions", params={"account_id": "U1", "page": 2, "limit": 5})

        assert r.status_code == 200
        data = r.json()
        assert data["pagination"] == {"page": 2, "limit": 5, "total": 12, "pages": 3}
        assert len(data["transactions"]) == 5
        created = [t["createdAt"] for t in data["transactions"]]
        assert created == sorted(created, reverse=True)

    def test_history_filters(self, client):
        client.post("/transactions", json=create_payload(transactionId="s1"))
        client.post("/transactions", json=create_payload(transactionId="r1", **{"from": "U2", "to": "U1", "type": "received"}))

        r = client.get("/transactions", params={"account_id": "U1", "type": "received"})
        assert [t["transactionId"] for t in r.json()["transactions"]] == ["R1"]

        r = client.get("/transactions", params={"account_id": "U1", "direction": "from"})
        assert [t["transactionId"] for t in r.json()["transactions"]] == ["S1"]

    def test_history_bad_query(self, client):
        assert client.get("/transactions", params={"account_id": "U1", "page": 0}).status_code == 422
        assert client.get("/transactions", params={"account_id": "U1", "direction": "up"}).status_code == 400

    def test_export_csv(self, client):
        client.post("/transactions", json=create_payload(note="lunch"))

        r = client.get("/transactions/export", params={"account_id": "U1"})

        assert r.status_code == 200
        assert r.headers["content-type"].startswith("text/csv")
        assert "attachment" in r.headers["content-disposition"]
        lines = r.text.splitlines()
        assert lines[0] == "Date,Transaction ID,Type,Amount,Fee,Status,Note"
        assert lines[1].endswith(",TX001,sent,50.00,0,pending,lunch")


class FailingStorage(InMemoryStorage):
    def find(self, table, filters, sort=None, limit=None, offset=0):
        raise RuntimeError("connection lost")


class TestStorageFailureMapping:
    """Storage failures map onto 5xx responses"""

    def test_storage_error_is_503(self):
        system = LedgerSystem(LedgerConfig(database_url="memory://"), storage=FailingStorage())
        try:
            client = TestClient(create_app(system))
            r = client.get("/transactions/TX001")
            assert r.status_code == 503
            assert r.json()["detail"] == "Storage unavailable"
        finally:
            system.close()
