import threading

import pytest

from conftest import FakeMarketFeed, RecordingSwapClient

from agent_engine.engine import TradingEngine
from agent_engine.errors import AgentNotFound, AgentValidationError, DeadlineExceeded, InvalidAgentState
from agent_engine.persistence.mutation_store import JsonlMutationStore

T0 = 1_700_000_000.0


@pytest.fixture
def engine_factory(config, make_pair):
    engines = []

    def _make(swap_client=None, pairs=None):
        engine = TradingEngine(
            config,
            market_feed=FakeMarketFeed(pairs if pairs is not None else [make_pair("AAA")]),
            feeds=[],
            swap_client=swap_client or RecordingSwapClient(),
            clock=lambda: T0,
        )
        engines.append(engine)
        return engine

    yield _make
    for engine in engines:
        engine.shutdown()


@pytest.fixture
def engine(engine_factory):
    return engine_factory()


def strong_snapshot(engine, monkeypatch, make_snapshot, make_token):
    monkeypatch.setattr(
        engine.aggregator, "build_snapshot",
        lambda cycle_time: make_snapshot(cycle_time, [make_token("AAA", score=85.0)]),
    )


def test_stopped_agents_are_not_evaluated(engine):
    engine.create_agent("idle", "wallet-1")

    summary = engine.run_cycle(T0)

    assert summary["agents"] == 0
    assert engine.aggregator.market_feed.calls == 0


def test_cycle_evaluates_running_agents(engine):
    first = engine.create_agent("a", "wallet-1")
    second = engine.create_agent("b", "wallet-2", strategy="aggressive")
    engine.start(first.id)
    engine.start(second.id)

    summary = engine.run_cycle(T0)

    assert summary["agents"] == 2
    assert summary["completed"] == 2
    # One snapshot shared by every agent
    assert engine.aggregator.market_feed.calls == 1
    assert engine.list_logs(first.id)
    assert engine.list_logs(second.id)
    assert engine.status()["last_cycle"] == summary


def test_buy_opens_position_and_persists(engine, monkeypatch, make_snapshot, make_token, config):
    agent = engine.start(engine.create_agent("a", "wallet-1", max_position_size=1.0).id)
    strong_snapshot(engine, monkeypatch, make_snapshot, make_token)

    engine.run_cycle(T0)

    positions = engine.list_positions(agent.id)
    assert len(positions) == 1
    assert positions[0].status == "open"
    assert positions[0].token_key == "solana:AAA"
    assert [t.type for t in engine.list_trades(agent.id)] == ["buy"]
    assert engine.position_summary(agent.id)["open_positions"] == 1
    assert agent.daily_trades_used == 1

    store = JsonlMutationStore(config.persist_dir)
    assert [r["type"] for r in store.read("trade")] == ["buy"]
    assert [r["status"] for r in store.read("position")] == ["open"]


def test_one_failing_agent_does_not_affect_others(engine, monkeypatch):
    bad = engine.start(engine.create_agent("bad", "wallet-1").id)
    good = engine.start(engine.create_agent("good", "wallet-2").id)
    original = engine.processor.process_agent

    def process_agent(agent, snapshot, deadline=None):
        if agent.id == bad.id:
            raise RuntimeError("boom")
        return original(agent, snapshot, deadline)

    monkeypatch.setattr(engine.processor, "process_agent", process_agent)

    summary = engine.run_cycle(T0)

    assert summary["errors"] == 1
    assert summary["completed"] == 1
    bad_log = engine.list_logs(bad.id)[0]
    assert bad_log.action == "error"
    assert "RuntimeError: boom" in bad_log.reasoning
    assert engine.list_logs(good.id)[0].action != "error"


def test_deadline_exceeded_is_skipped(engine, monkeypatch):
    agent = engine.start(engine.create_agent("a", "wallet-1").id)

    def process_agent(agent, snapshot, deadline=None):
        raise DeadlineExceeded("too slow")

    monkeypatch.setattr(engine.processor, "process_agent", process_agent)

    summary = engine.run_cycle(T0)

    assert summary["skipped"] == 1
    assert engine.list_logs(agent.id)[0].action == "skipped"


def test_slow_agent_times_out_and_is_not_rescheduled(config, engine, monkeypatch):
    config.agent_deadline_seconds = 0.2
    agent = engine.start(engine.create_agent("a", "wallet-1").id)
    release = threading.Event()

    def process_agent(agent, snapshot, deadline=None):
        release.wait(5)

    monkeypatch.setattr(engine.processor, "process_agent", process_agent)

    first = engine.run_cycle(T0)
    assert first["skipped"] == 1
    assert engine.list_logs(agent.id)[0].reasoning == "Evaluation timed out"
    assert engine.status()["in_flight"] == [agent.id]

    second = engine.run_cycle(T0 + 10)
    assert second["skipped"] == 1
    assert engine.list_logs(agent.id)[0].reasoning == "Previous evaluation still in flight"

    release.set()


def test_stop_lets_in_flight_evaluation_finish(engine, monkeypatch):
    agent = engine.start(engine.create_agent("a", "wallet-1").id)
    entered = threading.Event()
    release = threading.Event()
    original = engine.processor.process_agent

    def process_agent(agent, snapshot, deadline=None):
        entered.set()
        release.wait(5)
        return original(agent, snapshot)

    monkeypatch.setattr(engine.processor, "process_agent", process_agent)
    results = []
    runner = threading.Thread(target=lambda: results.append(engine.run_cycle(T0)))
    runner.start()
    assert entered.wait(5)

    engine.stop(agent.id)
    release.set()
    runner.join(5)

    assert results[0]["completed"] == 1
    logs = engine.list_logs(agent.id)
    assert len(logs) == 1
    assert logs[0].action not in ("skipped", "error")

    assert engine.run_cycle(T0 + 10)["agents"] == 0
    assert len(engine.list_logs(agent.id)) == 1


def test_delete_requires_stopped_agent(engine):
    agent = engine.start(engine.create_agent("a", "wallet-1").id)

    with pytest.raises(InvalidAgentState):
        engine.delete_agent(agent.id)

    engine.stop(agent.id)
    engine.delete_agent(agent.id)

    with pytest.raises(AgentNotFound):
        engine.get_agent(agent.id)
    with pytest.raises(AgentNotFound):
        engine.list_positions(agent.id)


def test_create_agent_validates_parameters(engine):
    with pytest.raises(AgentValidationError):
        engine.create_agent("a", "wallet-1", strategy="yolo")
    with pytest.raises(AgentValidationError):
        engine.create_agent("a", "wallet-1", stop_loss_percent=0)

    agent = engine.create_agent("a", "wallet-1")
    assert agent.status == "stopped"
    assert agent.chain == "solana"
    assert agent.created_at == T0


def test_restore_reloads_agents_and_open_positions(engine_factory, monkeypatch, make_snapshot, make_token):
    engine = engine_factory()
    kept = engine.start(engine.create_agent("kept", "wallet-1").id)
    removed = engine.create_agent("removed", "wallet-2")
    strong_snapshot(engine, monkeypatch, make_snapshot, make_token)
    engine.run_cycle(T0)
    engine.delete_agent(removed.id)
    engine.shutdown()

    restored = engine_factory()
    counts = restored.restore()

    assert counts == {"agents": 1, "positions": 1, "signal_performance": 0}
    agent = restored.get_agent(kept.id)
    assert agent.is_running
    assert agent.daily_trades_used == 1
    position = restored.list_positions(kept.id, "open")[0]
    assert agent.open_position_ids == [position.id]
    assert position.fingerprint

    # New agents never reuse a restored id
    assert restored.create_agent("new", "wallet-3").id > kept.id


def test_restart_without_shutdown_keeps_daily_trade_count(engine_factory, monkeypatch, make_snapshot, make_token):
    engine = engine_factory()
    agent = engine.start(engine.create_agent("a", "wallet-1", max_daily_trades=1).id)
    strong_snapshot(engine, monkeypatch, make_snapshot, make_token)
    engine.run_cycle(T0)
    assert agent.daily_trades_used == 1

    # Only what the cycle flushed is on disk
    restored = engine_factory()
    assert restored.restore()["positions"] == 1
    reloaded = restored.get_agent(agent.id)
    assert reloaded.daily_trades_used == 1
    assert reloaded.trade_day == agent.trade_day

    monkeypatch.setattr(
        restored.aggregator, "build_snapshot",
        lambda cycle_time: make_snapshot(
            cycle_time, [make_token("AAA", score=85.0), make_token("BBB", score=85.0)]
        ),
    )
    restored.run_cycle(T0 + 10)

    assert len(restored.list_positions(agent.id, "open")) == 1
    log = restored.list_logs(agent.id)[0]
    assert log.action == "rejected"
    assert "daily trade limit reached" in log.reasoning


def test_status_reports_engine_state(engine):
    engine.start(engine.create_agent("a", "wallet-1").id)
    engine.run_cycle(T0)

    status = engine.status()

    assert status["run_mode"] == "paper"
    assert status["agents"] == 1
    assert status["running_agents"] == 1
    assert status["cycle_count"] == 1
    assert status["regime"] == "neutral"
    assert status["persistence"]["pending"] == 0


def test_shutdown_request_stops_run_loop(engine):
    runner = threading.Thread(target=engine.run)
    runner.start()
    while engine.scheduler.cycle_count == 0:
        runner.join(0.01)

    engine.scheduler.shutdown_service.shutdown()
    runner.join(5)

    assert not runner.is_alive()
    assert engine.scheduler.shutdown_service.requested
    assert not engine.scheduler.running
