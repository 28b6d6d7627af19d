import pytest
from fastapi.testclient import TestClient

from conftest import FakeMarketFeed, RecordingSwapClient

import api_server
from agent_engine.engine import TradingEngine
from agent_engine.errors import AgentValidationError

T0 = 1_700_000_000.0


@pytest.fixture
def engine(config, make_pair, monkeypatch):
    engine = TradingEngine(
        config,
        market_feed=FakeMarketFeed([make_pair("AAA")]),
        feeds=[],
        swap_client=RecordingSwapClient(),
        clock=lambda: T0,
    )
    monkeypatch.setattr(api_server, "engine_instance", engine)
    yield engine
    engine.shutdown()


@pytest.fixture
def client(engine):
    return TestClient(api_server.app)


def create(client, **overrides):
    body = {"name": "alpha", "wallet_address": "wallet-1"}
    body.update(overrides)
    return client.post("/api/agents", json=body)


def test_unavailable_without_engine(monkeypatch):
    monkeypatch.setattr(api_server, "engine_instance", None)

    response = TestClient(api_server.app).get("/api/status")

    assert response.status_code == 503


def test_create_and_fetch_agent(client):
    response = create(client, strategy="aggressive", max_position_size=2.5)

    assert response.status_code == 201
    agent = response.json()
    assert agent["status"] == "stopped"
    assert agent["strategy"] == "aggressive"
    assert agent["chain"] == "solana"

    assert client.get(f"/api/agents/{agent['id']}").json()["name"] == "alpha"
    assert [a["id"] for a in client.get("/api/agents").json()] == [agent["id"]]


def test_create_rejects_invalid_parameters(client):
    assert create(client, strategy="yolo").status_code == 422
    assert create(client, stop_loss_percent=150).status_code == 422
    assert create(client, name="").status_code == 422


def test_unknown_agent_is_404(client):
    assert client.get("/api/agents/42").status_code == 404
    assert client.post("/api/agents/42/start").status_code == 404
    assert client.get("/api/agents/42/trades").status_code == 404


def test_start_stop_delete(client):
    agent_id = create(client).json()["id"]

    started = client.post(f"/api/agents/{agent_id}/start")
    assert started.json()["agent"]["status"] == "running"
    assert [a["id"] for a in client.get("/api/agents?status=running").json()] == [agent_id]

    assert client.delete(f"/api/agents/{agent_id}").status_code == 409

    assert client.post(f"/api/agents/{agent_id}/stop").json()["agent"]["status"] == "stopped"
    assert client.delete(f"/api/agents/{agent_id}").status_code == 200
    assert client.get(f"/api/agents/{agent_id}").status_code == 404


def test_positions_trades_and_logs_after_cycle(client, engine, monkeypatch, make_snapshot, make_token):
    agent_id = create(client).json()["id"]
    client.post(f"/api/agents/{agent_id}/start")
    monkeypatch.setattr(
        engine.aggregator, "build_snapshot",
        lambda cycle_time: make_snapshot(cycle_time, [make_token("AAA", score=85.0)]),
    )
    engine.run_cycle(T0)

    positions = client.get(f"/api/agents/{agent_id}/positions?status=open").json()
    assert len(positions) == 1
    assert positions[0]["token_key"] == "solana:AAA"

    summary = client.get(f"/api/agents/{agent_id}/positions/summary").json()
    assert summary["open_positions"] == 1
    assert summary["cooldown"]["active"] is False

    trades = client.get(f"/api/agents/{agent_id}/trades?limit=10").json()
    assert [t["type"] for t in trades] == ["buy"]

    logs = client.get(f"/api/agents/{agent_id}/logs").json()
    assert logs[0]["action"] == "buy"

    assert client.get(f"/api/agents/{agent_id}/positions?status=bogus").status_code == 422


def test_status_and_signal_report(client, engine):
    status = client.get("/api/status").json()
    assert status["run_mode"] == "paper"
    assert status["cycle_count"] == 0

    report = client.get("/api/signals/performance?strategy=balanced").json()
    assert report == {"signals": {}, "blacklisted_combos": []}


def test_only_agent_validation_errors_are_client_errors(engine, monkeypatch):
    client = TestClient(api_server.app, raise_server_exceptions=False)

    def reject(name, wallet_address, **params):
        raise AgentValidationError("risk_level must be between 1 and 10")

    monkeypatch.setattr(engine, "create_agent", reject)
    response = create(client)
    assert response.status_code == 422
    assert response.json()["detail"] == "risk_level must be between 1 and 10"

    def broken_status():
        raise ValueError("cannot convert float NaN to integer")

    monkeypatch.setattr(engine, "status", broken_status)
    response = client.get("/api/status")
    assert response.status_code == 500
    assert response.json()["path"] == "/api/status"
