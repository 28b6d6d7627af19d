import pytest

from agent_engine.decision_engine import DecisionEngine, entry_filter_reason, signal_fingerprint
from agent_engine.models import Position, TechnicalIndicators
from agent_engine.strategy import SIGNAL_NAMES, get_strategy_config

NOW = 1_700_000_000.0
BALANCED = get_strategy_config("balanced")


@pytest.fixture
def engine(learning_store, memory):
    return DecisionEngine(learning_store, memory)


def held(token, pid=1, entry=1.0):
    return Position(id=pid, agent_id=1, token_key=token.key, token_symbol=token.symbol, chain="solana",
                    size=0.5, avg_entry_price=entry, current_price=token.price, status="open")


def test_uniform_scores_give_that_conviction(engine, make_token):
    assert engine.conviction(make_token(score=80.0), "balanced", "neutral") == pytest.approx(80.0)
    assert engine.conviction(make_token(score=40.0), "degen", "neutral") == pytest.approx(40.0)


def test_buys_strongest_token(engine, agent, make_token, make_snapshot):
    snapshot = make_snapshot(NOW, [make_token("AAA", score=70.0), make_token("BBB", score=85.0)])

    decision = engine.evaluate(agent, snapshot)

    assert decision.action == "buy"
    assert decision.token_key == "solana:BBB"
    assert decision.confidence == pytest.approx(85.0)
    assert decision.price == 1.0
    assert 0 < decision.size <= agent.max_position_size
    assert decision.stop_loss_percent <= agent.stop_loss_percent
    assert decision.fingerprint == frozenset(SIGNAL_NAMES)
    assert decision.tokens_analyzed == 2


def test_evaluate_is_deterministic(engine, agent, make_token, make_snapshot):
    snapshot = make_snapshot(NOW, [make_token("AAA", score=75.0), make_token("BBB", score=75.0)])

    first = engine.evaluate(agent, snapshot)
    second = engine.evaluate(agent, snapshot)

    assert first == second
    # Equal conviction and quality: lowest token key wins
    assert first.token_key == "solana:AAA"


def test_holds_below_threshold(engine, agent, make_token, make_snapshot):
    decision = engine.evaluate(agent, make_snapshot(NOW, [make_token(score=55.0, rug_risk_score=20.0)]))

    assert decision.action == "hold"
    assert "below threshold 58.0" in decision.reasoning


def test_memory_offset_raises_threshold(engine, memory, agent, make_token, make_snapshot):
    snapshot = make_snapshot(NOW, [make_token(score=62.0)])
    assert engine.evaluate(agent, snapshot).action == "buy"

    memory.record_close(agent_id=agent.id, token_key="solana:ZZZ", pnl_percent=-5.0, ts=NOW - 100)
    memory.record_close(agent_id=agent.id, token_key="solana:YYY", pnl_percent=-5.0, ts=NOW - 50)

    # 58 + 6
    assert engine.evaluate(agent, snapshot).action == "hold"


def test_skips_blacklisted_combo(engine, learning_store, agent, make_token, make_snapshot):
    token = make_token(score=80.0)
    for _ in range(5):
        learning_store.record_outcome(signal_fingerprint(token, BALANCED), "balanced", -6.0, NOW - 60)
    learning_store.sync()

    decision = engine.evaluate(agent, make_snapshot(NOW, [token]))

    assert decision.action == "hold"
    assert "blacklisted=1" in decision.reasoning


def test_skips_other_chain_and_held_tokens(engine, agent, make_token, make_snapshot):
    other = make_token("CCC", chain="base", key="base:CCC")
    mine = make_token("AAA")
    snapshot = make_snapshot(NOW, [other, mine])

    decision = engine.evaluate(agent, snapshot, [held(mine)])

    assert decision.action == "hold"


def test_entry_filters(make_token):
    assert entry_filter_reason(make_token(), BALANCED) is None
    assert "liquidity" in entry_filter_reason(make_token(liquidity_usd=5_000.0), BALANCED)
    assert entry_filter_reason(make_token(whale_activity="distributing"), BALANCED) == "whales distributing"
    assert "RSI" in entry_filter_reason(make_token(technicals=TechnicalIndicators(rsi_14=80.0)), BALANCED)
    assert "safety" in entry_filter_reason(make_token(safety_score=30.0, rug_risk_score=20.0), BALANCED)


def test_urgent_exit_closes_position(engine, agent, make_token, make_snapshot):
    token = make_token(buy_pressure_score=20.0)

    decision = engine.evaluate(agent, make_snapshot(NOW, [token]), [held(token)])

    assert decision.action == "close"
    assert decision.position_id == 1
    assert "buy pressure" in decision.reasoning


def test_overbought_partial_exit(engine, agent, make_token, make_snapshot):
    token = make_token(price=1.2, technicals=TechnicalIndicators(rsi_14=88.0, trend_strength=80.0))

    decision = engine.evaluate(agent, make_snapshot(NOW, [token]), [held(token)])

    assert decision.action == "sell"
    assert decision.sell_fraction == 0.5
