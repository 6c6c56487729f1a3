import asyncio
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from conftest import PRICE
from sof_orchestrator.api import app as app_module
from sof_orchestrator.api.app import app
from sof_orchestrator.domain.models import SeasonStatus
from sof_orchestrator.utils.database import init_db, log_event


def _cfg(chain) -> dict:
    return {
        "network": {"name": "LOCAL", "rpc_url": "http://127.0.0.1:8545", "chain_id": 31337},
        "contracts": {
            "sof_token": chain.SOF,
            "raffle": chain.RAFFLE,
            "prize_distributor": chain.DISTRIBUTOR,
            "vrf_coordinator": chain.VRF,
        },
        "trading": {"confirmations": 1, "confirmation_timeout_seconds": 5, "refresh_delay_seconds": 0},
        "lifecycle": {"fulfill_mock_vrf": True, "finalize_poll_interval_seconds": 0},
    }


@pytest.fixture
def services(chain, session):
    app_module.install_services(session, _cfg(chain), journal=False)
    yield app_module
    asyncio.run(app_module._teardown_services())


def test_api_health_ok():
    client = TestClient(app)
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert "db_path" in data
    assert data["ledger_ready"] is False


def test_api_events_contains_recent_event():
    init_db()
    token = f"pytest-api-{uuid4()}"
    log_event(level="INFO", message=token, season_id=9, step="pytest")
    log_event(level="ERROR", message=f"{token}-trade", step="trade")

    client = TestClient(app)
    resp = client.get("/api/history/events", params={"limit": 50})
    assert resp.status_code == 200
    events = resp.json()
    assert any(e.get("message") == token for e in events)

    resp = client.get("/api/history/events", params={"limit": 50, "season_id": 9})
    assert all(e.get("season_id") == 9 for e in resp.json())


def test_trading_endpoints_need_a_session():
    client = TestClient(app)
    resp = client.post("/api/trades/buy", json={"season_id": 1, "quantity": 1})
    assert resp.status_code == 503


def test_quote_endpoint(services, chain):
    client = TestClient(app)
    resp = client.get(f"/api/curves/{chain.CURVE}/quote", params={"side": "buy", "quantity": 100})
    assert resp.status_code == 200
    data = resp.json()
    base = 100 * PRICE
    assert data["base_amount"] == str(base)
    assert data["amount_with_fees"] == str(base + base * 10 // 10_000)
    assert data["available"] is True

    resp = client.get(f"/api/curves/{chain.CURVE}/quote", params={"side": "hold", "quantity": 1})
    assert resp.status_code == 422


def test_curve_config_endpoint(services, chain):
    client = TestClient(app)
    data = client.get(f"/api/curves/{chain.CURVE}/config").json()
    assert data["remaining_supply"] == str(5_000 - 200)
    assert data["max_sellable"] == "50"
    assert data["trading_locked"] is False


def test_buy_validates_payload(services):
    client = TestClient(app)
    resp = client.post("/api/trades/buy", json={"season_id": 1, "quantity": 0})
    assert resp.status_code == 400
    resp = client.post("/api/trades/buy", json={"quantity": 2})
    assert resp.status_code == 400


def test_buy_endpoint(services, chain):
    chain.end_time = 10**12
    client = TestClient(app)
    resp = client.post("/api/trades/buy", json={"season_id": 1, "quantity": 3})
    assert resp.status_code == 200
    data = resp.json()
    assert data["success"] is True
    assert data["transactionId"].startswith("0x")
    assert chain.submitted_functions() == ["approve", "buyTokens"]


def test_checkpoint_and_resolve_endpoints(services, chain):
    client = TestClient(app)
    cp = client.get("/api/seasons/1/checkpoint").json()
    assert cp["status"] == int(SeasonStatus.ACTIVE)
    assert cp["role_granted"] is True

    data = client.post("/api/seasons/1/resolve").json()
    assert data["outcome"] == "funded"
    assert len(data["transaction_ids"]) == 5

    data = client.post("/api/seasons/1/fund").json()
    assert data["outcome"] == "already_funded"


def test_regression_maps_to_conflict(services, chain):
    client = TestClient(app)
    chain.status = SeasonStatus.COMPLETED
    assert client.get("/api/seasons/1/checkpoint").status_code == 200
    chain.status = SeasonStatus.ACTIVE
    assert client.post("/api/seasons/1/advance").status_code == 409
