"""
Integration tests for the Transaction Ledger API
Tests end-to-end workflows using FastAPI TestClient
"""

import io
import json
import logging

import pytest
from decimal import Decimal
from fastapi.testclient import TestClient

from transaction_ledger.api import create_app
from transaction_ledger.api.dependencies import LedgerSystem
from transaction_ledger.config import LedgerConfig


BASE = "/api/v1/transactions"


@pytest.fixture
def client():
    """Create a test client backed by an in-memory ledger"""
    system = LedgerSystem(LedgerConfig(storage_backend="memory"))
    with TestClient(create_app(system)) as test_client:
        yield test_client


def create(client, **overrides):
    payload = {
        "account_number": "12345678",
        "amount": "100.00",
        "type": "DEPOSIT",
        "description": "Test transaction",
    }
    payload.update(overrides)
    return client.post(BASE, json=payload)


class TestHealthEndpoints:
    """Test basic health and root endpoints"""

    def test_health(self, client):
        """Test health endpoint"""
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"

    def test_root(self, client):
        """Test root endpoint"""
        r = client.get("/")
        assert r.status_code == 200
        assert r.json()["endpoints"]["transactions"] == BASE


class TestTransactionLifecycle:
    """End-to-end create, read, update and delete"""

    def test_create_transaction(self, client):
        """Test creating a transaction"""
        r = create(client)
        assert r.status_code == 201
        data = r.json()
        assert data["reference"].startswith("TXN")
        assert len(data["reference"]) == 24
        assert Decimal(str(data["amount"])) == Decimal("100.00")
        assert data["type"] == "DEPOSIT"
        assert data["status"] == "COMPLETED"

    def test_create_with_camel_case_fields(self, client):
        """Test wire aliases used by existing clients"""
        r = client.post(BASE, json={
            "accountNumber": "87654321",
            "amount": 42.5,
            "type": "payment",
            "description": "Card payment",
            "transactionDate": "2025-01-15T10:00:00Z",
        })
        assert r.status_code == 201
        data = r.json()
        assert data["account_number"] == "87654321"
        assert data["type"] == "PAYMENT"
        assert data["transaction_date"].startswith("2025-01-15T10:00:00")

    def test_get_update_delete(self, client):
        """Test the full lifecycle of one transaction"""
        created = create(client, notes="first").json()
        transaction_id = created["id"]

        r = client.get(f"{BASE}/{transaction_id}")
        assert r.status_code == 200
        assert r.json()["reference"] == created["reference"]

        r = client.get(f"{BASE}/reference/{created['reference']}")
        assert r.status_code == 200
        assert r.json()["id"] == transaction_id

        r = client.put(f"{BASE}/{transaction_id}", json={
            "description": "New desc",
            "notes": "N",
            "account_number": "99999999",
        })
        assert r.status_code == 200
        assert r.json()["description"] == "New desc"
        assert r.json()["notes"] == "N"
        assert r.json()["account_number"] == "12345678"

        r = client.delete(f"{BASE}/{transaction_id}")
        assert r.status_code == 204

        r = client.get(f"{BASE}/{transaction_id}")
        assert r.status_code == 404

    def test_not_found(self, client):
        """Test missing transactions render the error body"""
        r = client.get(f"{BASE}/9999")
        assert r.status_code == 404
        data = r.json()
        assert data["error_code"] == "TRANSACTION_NOT_FOUND"
        assert data["status"] == 404
        assert data["path"] == f"{BASE}/9999"
        assert data["details"] == {"key": 9999}

        assert client.put(f"{BASE}/9999", json={"description": "Valid text"}).status_code == 404
        assert client.delete(f"{BASE}/9999").status_code == 404


class TestValidationErrors:
    """Test invalid input is rejected with 400"""

    def test_non_positive_amount(self, client):
        """Test amount must be positive"""
        r = create(client, amount="0")
        assert r.status_code == 400
        data = r.json()
        assert data["error_code"] == "VALIDATION_ERROR"
        assert data["details"] == {"field": "amount"}
        assert client.get(BASE).json()["total_elements"] == 0

    def test_malformed_amount(self, client):
        """Test unparseable request values are validation errors"""
        r = create(client, amount="lots")
        assert r.status_code == 400
        assert r.json()["error_code"] == "VALIDATION_ERROR"

    def test_unknown_type(self, client):
        """Test unknown transaction types"""
        r = create(client, type="LOAN")
        assert r.status_code == 400
        assert "Invalid transaction type" in r.json()["message"]

    def test_bad_account_number(self, client):
        """Test account number format"""
        assert create(client, account_number="12-34").status_code == 400

    def test_inverted_amount_range(self, client):
        """Test inverted criteria bounds"""
        r = client.get(f"{BASE}/criteria", params={"min_amount": "500", "max_amount": "100"})
        assert r.status_code == 400

    def test_paging_limits(self, client):
        """Test page size and recent limit bounds"""
        assert client.get(BASE, params={"size": 101}).status_code == 400
        assert client.get(f"{BASE}/recent", params={"limit": 11}).status_code == 400


class TestQueries:
    """Test listing, filtering and balances over HTTP"""

    def setup_records(self, client):
        create(client, amount="1000.00")
        create(client, amount="250.00", description="Salary deposit")
        create(client, amount="300.00", type="WITHDRAWAL", description="ATM withdrawal")
        create(client, account_number="87654321", amount="75.00", type="FEE", description="Monthly fee")

    def test_list_and_paging(self, client):
        """Test paging metadata"""
        self.setup_records(client)
        data = client.get(BASE, params={"page": 0, "size": 3}).json()

        assert len(data["content"]) == 3
        assert data["total_elements"] == 4
        assert data["total_pages"] == 2
        assert data["is_first"] is True
        assert data["is_last"] is False

    def test_account_and_type_listings(self, client):
        """Test per-account and per-type listings"""
        self.setup_records(client)

        assert client.get(f"{BASE}/account/12345678").json()["total_elements"] == 3
        assert client.get(f"{BASE}/type/fee").json()["total_elements"] == 1
        assert client.get(f"{BASE}/account/12345678/count").json()["count"] == 3

    def test_balances(self, client):
        """Test derived balances"""
        self.setup_records(client)

        r = client.get(f"{BASE}/account/12345678/balance")
        assert r.status_code == 200
        assert Decimal(r.json()["balance"]) == Decimal("950.00")

        r = client.get(f"{BASE}/account/12345678/balance/deposit")
        assert r.json()["type"] == "DEPOSIT"
        assert Decimal(r.json()["balance"]) == Decimal("1250.00")

        r = client.get(f"{BASE}/account/00000000/balance")
        assert Decimal(r.json()["balance"]) == Decimal("0")

    def test_balance_updates_after_create(self, client):
        """Test a new deposit is reflected in the next balance read"""
        self.setup_records(client)
        client.get(f"{BASE}/account/12345678/balance")
        create(client, amount="50.00")

        r = client.get(f"{BASE}/account/12345678/balance")
        assert Decimal(r.json()["balance"]) == Decimal("1000.00")

    def test_criteria_and_ranges(self, client):
        """Test criteria, amount range and search endpoints"""
        self.setup_records(client)

        r = client.get(f"{BASE}/criteria", params={"account_number": "12345678", "type": "DEPOSIT"})
        assert r.json()["total_elements"] == 2

        r = client.get(f"{BASE}/amount-range", params={"min_amount": "75", "max_amount": "300"})
        assert r.json()["total_elements"] == 3

        r = client.get(f"{BASE}/search", params={"keyword": "salary"})
        assert [t["description"] for t in r.json()["content"]] == ["Salary deposit"]

    def test_date_range(self, client):
        """Test explicit transaction dates within a range"""
        create(client, transactionDate="2025-01-10T00:00:00Z")
        create(client, transactionDate="2025-02-10T00:00:00Z")

        r = client.get(f"{BASE}/date-range", params={
            "start_date": "2025-01-01T00:00:00Z",
            "end_date": "2025-01-31T23:59:59Z",
        })
        assert r.status_code == 200
        assert r.json()["total_elements"] == 1

    def test_recent_and_types(self, client):
        """Test recent transactions and the type catalog"""
        self.setup_records(client)

        assert len(client.get(f"{BASE}/recent", params={"limit": 2}).json()) == 2
        assert "EXCHANGE" in client.get(f"{BASE}/types").json()

    def test_camel_case_query_parameters(self, client):
        """Test filters and sorting also accept camelCase names"""
        self.setup_records(client)

        r = client.get(f"{BASE}/criteria", params={
            "accountNumber": "12345678", "minAmount": "250", "maxAmount": "1000",
            "sortBy": "amount", "sortDir": "asc",
        })
        assert [Decimal(str(t["amount"])) for t in r.json()["content"]] == [
            Decimal("250"), Decimal("300"), Decimal("1000")
        ]

        r = client.get(f"{BASE}/amount-range", params={"minAmount": "75", "maxAmount": "300"})
        assert r.json()["total_elements"] == 3

        r = client.get(BASE, params={"sortBy": "amount", "sortDir": "asc"})
        assert [Decimal(str(t["amount"])) for t in r.json()["content"]] == [
            Decimal("75"), Decimal("250"), Decimal("300"), Decimal("1000")
        ]

    def test_camel_case_date_range(self, client):
        """Test the date range accepts startDate and endDate"""
        create(client, transactionDate="2025-01-10T00:00:00Z")
        create(client, transactionDate="2025-02-10T00:00:00Z")

        r = client.get(f"{BASE}/date-range", params={
            "startDate": "2025-02-01T00:00:00Z",
            "endDate": "2025-02-28T00:00:00Z",
        })
        assert r.status_code == 200
        assert r.json()["total_elements"] == 1

        r = client.get(f"{BASE}/criteria", params={"startDate": "2025-01-01T00:00:00Z"})
        assert r.json()["total_elements"] == 2

    def test_range_requires_both_bounds(self, client):
        """Test a missing bound is a validation error"""
        r = client.get(f"{BASE}/date-range", params={"startDate": "2025-01-01T00:00:00Z"})
        assert r.status_code == 400
        assert r.json()["error_code"] == "VALIDATION_ERROR"

        r = client.get(f"{BASE}/amount-range", params={"min_amount": "1"})
        assert r.status_code == 400


class TestCorrelationId:
    """Test request correlation ids in headers and logs"""

    def test_header_is_echoed(self, client):
        """Test a supplied correlation id is returned unchanged"""
        r = client.get("/health", headers={"X-Correlation-ID": "req-abc"})
        assert r.headers["X-Correlation-ID"] == "req-abc"

    def test_header_is_generated(self, client):
        """Test each request without an id gets a fresh one"""
        first = client.get("/health").headers["X-Correlation-ID"]
        second = client.get("/health").headers["X-Correlation-ID"]

        assert first
        assert first != second

    def test_action_logs_carry_request_id(self, client):
        """Test service audit lines are tagged with the request's id"""
        stream = io.StringIO()
        logging.getLogger("ledger").handlers[0].setStream(stream)

        r = client.post(BASE, headers={"X-Correlation-ID": "req-123"}, json={
            "account_number": "12345678",
            "amount": "100.00",
            "type": "DEPOSIT",
            "description": "Test transaction",
        })
        assert r.status_code == 201

        entries = [json.loads(line) for line in stream.getvalue().splitlines() if line]
        created = [e for e in entries if e.get("action") == "create_transaction"]
        assert len(created) == 1
        assert created[0]["correlation_id"] == "req-123"
