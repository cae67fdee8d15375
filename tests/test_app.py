import os
import sys
import logging

import pytest
from fastapi.testclient import TestClient

# Add the project root to sys.path to resolve module imports correctly
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

# Import the FastAPI app and other necessary components
from app import app, limiter
from cipher import range_encrypt_element
from config import INT64_MIN, INT64_MAX

KEY = 0x1234_5678_9ABC_DEF0


@pytest.fixture
def client(tmp_path, monkeypatch):
    """
    Pytest fixture to provide a test client with an isolated, temporary database.
    """
    test_db_path = tmp_path / "test_permuteseq.db"

    # Use monkeypatch to override the database file path used by the app.
    monkeypatch.setattr("db_manager.DB_FILE", str(test_db_path))
    monkeypatch.setattr("config.DEFAULT_CRYPT_KEY", None)
    limiter.reset()

    # The TestClient context manager runs the application's lifespan (startup and shutdown).
    with TestClient(app) as test_client:
        yield test_client


# ===================================
# 1. Range Endpoints
# ===================================

def test_health_check_ok(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_range_encrypt_and_decrypt(client: TestClient):
    body = {"value": 0, "min_val": 0, "max_val": 999, "crypt_key": KEY}
    response = client.post("/api/v1/range/encrypt", json=body)
    assert response.status_code == 200
    encrypted = response.json()["value"]
    assert encrypted == range_encrypt_element(0, 0, 999, KEY)

    response = client.post("/api/v1/range/decrypt", json={**body, "value": encrypted})
    assert response.status_code == 200
    assert response.json()["value"] == 0


def test_full_range_over_http(client: TestClient):
    body = {"value": INT64_MIN, "min_val": INT64_MIN, "max_val": INT64_MAX, "crypt_key": -1}
    encrypted = client.post("/api/v1/range/encrypt", json=body).json()["value"]
    response = client.post("/api/v1/range/decrypt", json={**body, "value": encrypted})
    assert response.json()["value"] == INT64_MIN


def test_value_out_of_range(client: TestClient):
    response = client.post("/api/v1/range/encrypt", json={"value": 1000, "min_val": 0, "max_val": 999, "crypt_key": 1})
    assert response.status_code == 400
    assert "outside of range" in response.json()["error"]


def test_range_too_small(client: TestClient):
    response = client.post("/api/v1/range/decrypt", json={"value": 1, "min_val": 0, "max_val": 2, "crypt_key": 1})
    assert response.status_code == 400
    assert "too short" in response.json()["error"]


def test_key_is_required_without_default(client: TestClient):
    response = client.post("/api/v1/range/encrypt", json={"value": 1, "min_val": 0, "max_val": 99})
    assert response.status_code == 400
    assert "crypt_key" in response.json()["error"]


def test_default_key_is_used(client: TestClient, monkeypatch):
    monkeypatch.setattr("config.DEFAULT_CRYPT_KEY", KEY)
    response = client.post("/api/v1/range/encrypt", json={"value": 1, "min_val": 0, "max_val": 99})
    assert response.status_code == 200
    assert response.json()["value"] == range_encrypt_element(1, 0, 99, KEY)


def test_payload_outside_64bit_domain(client: TestClient):
    response = client.post("/api/v1/range/encrypt", json={"value": 1, "min_val": 0, "max_val": 99, "crypt_key": 2**64})
    assert response.status_code == 422
    response = client.post("/api/v1/range/encrypt", json={"value": 1, "min_val": 0, "max_val": INT64_MAX + 1, "crypt_key": 1})
    assert response.status_code == 422


def test_cycle_limit_maps_to_server_error(client: TestClient, monkeypatch, caplog):
    """A network that never lands inside the range is reported as an internal error."""
    monkeypatch.setattr("cipher.feistel", lambda block, hsz, keys: 15)
    with caplog.at_level(logging.ERROR, logger="permuteseq"):
        response = client.post("/api/v1/range/encrypt", json={"value": 0, "min_val": 0, "max_val": 4, "crypt_key": 1})
    assert response.status_code == 500
    assert "cycle walking" in response.json()["error"]
    assert any(r.levelno == logging.ERROR and "Cycle walking failed" in r.getMessage() for r in caplog.records)


def test_rate_limit_is_enforced(client: TestClient):
    body = {"crypt_key": KEY}
    for _ in range(60):
        assert client.post("/api/v1/sequences/missing/nextval", json=body).status_code == 404
    response = client.post("/api/v1/sequences/missing/nextval", json=body)
    assert response.status_code == 429
    assert "Rate limit exceeded" in response.text


# ===================================
# 2. Sequence Endpoints
# ===================================

def test_sequence_lifecycle(client: TestClient):
    response = client.post("/api/v1/sequences", json={"name": "invoices", "min_val": 1000, "max_val": 9999})
    assert response.status_code == 201
    assert response.json()["start_value"] == 1000

    assert client.post("/api/v1/sequences", json={"name": "invoices"}).status_code == 409

    response = client.get("/api/v1/sequences/invoices")
    assert response.status_code == 200
    assert response.json()["max_value"] == 9999

    assert [s["name"] for s in client.get("/api/v1/sequences").json()] == ["invoices"]

    assert client.delete("/api/v1/sequences/invoices").status_code == 204
    assert client.get("/api/v1/sequences/invoices").status_code == 404
    assert client.delete("/api/v1/sequences/invoices").status_code == 404


def test_invalid_sequence_definitions(client: TestClient):
    assert client.post("/api/v1/sequences", json={"name": "no spaces"}).status_code == 422
    assert client.post("/api/v1/sequences", json={"name": "s", "increment": 0}).status_code == 422
    response = client.post("/api/v1/sequences", json={"name": "s", "min_val": 10, "max_val": 1})
    assert response.status_code == 400


def test_permuted_nextval_and_reverse(client: TestClient):
    client.post("/api/v1/sequences", json={"name": "tickets", "min_val": 1, "max_val": 16})

    permuted = []
    for _ in range(16):
        response = client.post("/api/v1/sequences/tickets/nextval", json={"crypt_key": KEY})
        assert response.status_code == 200
        permuted.append(response.json()["value"])
    assert sorted(permuted) == list(range(1, 17))

    originals = [
        client.post("/api/v1/sequences/tickets/reverse", json={"value": p, "crypt_key": KEY}).json()["value"]
        for p in permuted
    ]
    assert originals == list(range(1, 17))

    response = client.post("/api/v1/sequences/tickets/nextval", json={"crypt_key": KEY})
    assert response.status_code == 409


def test_nextval_on_unknown_or_short_sequence(client: TestClient):
    response = client.post("/api/v1/sequences/missing/nextval", json={"crypt_key": KEY})
    assert response.status_code == 404

    client.post("/api/v1/sequences", json={"name": "tiny", "min_val": 1, "max_val": 3})
    response = client.post("/api/v1/sequences/tiny/nextval", json={"crypt_key": KEY})
    assert response.status_code == 400
    assert client.get("/api/v1/sequences/tiny").json()["is_called"] is False


def test_setval_repositions_a_sequence(client: TestClient):
    client.post("/api/v1/sequences", json={"name": "orders", "min_val": 1, "max_val": 100})

    response = client.post("/api/v1/sequences/orders/setval", json={"value": 40})
    assert response.status_code == 200
    assert response.json()["last_value"] == 40
    assert response.json()["is_called"] is True

    # The next permuted value is the encryption of 41
    response = client.post("/api/v1/sequences/orders/nextval", json={"crypt_key": KEY})
    assert response.json()["value"] == range_encrypt_element(41, 1, 100, KEY)

    response = client.post("/api/v1/sequences/orders/setval", json={"value": 7, "is_called": False})
    assert response.json()["is_called"] is False
    response = client.post("/api/v1/sequences/orders/nextval", json={"crypt_key": KEY})
    assert response.json()["value"] == range_encrypt_element(7, 1, 100, KEY)


def test_setval_errors(client: TestClient):
    assert client.post("/api/v1/sequences/missing/setval", json={"value": 1}).status_code == 404

    client.post("/api/v1/sequences", json={"name": "orders", "min_val": 1, "max_val": 100})
    response = client.post("/api/v1/sequences/orders/setval", json={"value": 101})
    assert response.status_code == 400
    assert "out of bounds" in response.json()["error"]


def test_health_reports_sequence_count(client: TestClient):
    client.post("/api/v1/sequences", json={"name": "a"})
    client.post("/api/v1/sequences", json={"name": "b"})
    assert client.get("/health").json()["sequences"] == 2


def test_health_check_reports_database_errors(client: TestClient, monkeypatch):
    async def broken_count():
        raise RuntimeError("disk I/O error")

    monkeypatch.setattr("db_manager.count_sequences", broken_count)
    response = client.get("/health")
    assert response.status_code == 503
    assert response.json()["status"] == "unhealthy"
