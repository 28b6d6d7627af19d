import pytest

from agent_engine.models import Decision, Position
from agent_engine.risk_manager import DAILY_LIMIT_REASON, RiskGovernor, utc_day

NOW = 1_700_000_000.0  # 2023-11-14 22:13 UTC


def buy(size=0.5, confidence=70.0, token_key="solana:AAA"):
    return Decision(action="buy", confidence=confidence, reasoning="entry", token_key=token_key,
                    token_symbol=token_key.split(":")[1], size=size, price=1.0)


def open_position(pid, token_key, size=0.5):
    return Position(id=pid, agent_id=1, token_key=token_key, token_symbol=token_key, chain="solana",
                    size=size, avg_entry_price=1.0, current_price=1.0, status="open")


@pytest.fixture
def governor(config):
    return RiskGovernor(config, clock=lambda: NOW)


def test_daily_limit_scenario(governor, agent):
    agent.max_daily_trades = 2

    for _ in range(2):
        assert governor.authorize(agent, buy(), now=NOW).approved
        governor.record_trade_opened(agent, NOW)

    result = governor.authorize(agent, buy(), now=NOW)
    assert not result.approved
    assert result.reason == DAILY_LIMIT_REASON
    assert agent.daily_trades_used == 2

    # Next UTC day resets the counter
    tomorrow = NOW + 86400
    assert governor.authorize(agent, buy(), now=tomorrow).approved
    assert agent.daily_trades_used == 0
    assert agent.trade_day == utc_day(tomorrow)


def test_exits_bypass_limits(governor, agent):
    agent.daily_trades_used = agent.max_daily_trades
    agent.trade_day = utc_day(NOW)
    close = Decision(action="close", confidence=90.0, reasoning="exit", token_key="solana:AAA", size=0.5)

    assert governor.authorize(agent, close, now=NOW).approved
    assert governor.authorize(agent, Decision(action="hold", confidence=0, reasoning=""), now=NOW).approved


def test_rejects_oversized_and_non_positive(governor, agent):
    assert not governor.authorize(agent, buy(size=1.5), now=NOW).approved
    assert not governor.authorize(agent, buy(size=0.0), now=NOW).approved


def test_rejects_when_max_open_positions_reached(governor, agent):
    positions = [open_position(i, f"solana:T{i}") for i in range(5)]

    result = governor.authorize(agent, buy(), positions, now=NOW)

    assert not result.approved
    assert "max open positions" in result.reason


def test_rejects_duplicate_token(governor, agent):
    result = governor.authorize(agent, buy(), [open_position(1, "solana:AAA")], now=NOW)

    assert not result.approved
    assert "already open" in result.reason


def test_clamps_to_remaining_budget(governor, agent):
    # Positions opened before the agent's max size was lowered
    positions = [open_position(i, f"solana:T{i}", size=1.15) for i in range(4)]

    result = governor.authorize(agent, buy(size=0.8), positions, now=NOW)

    # Budget: 1.0 x 5 positions - 4.6 exposure
    assert result.approved
    assert result.size == pytest.approx(0.4)


def test_cooldown_after_consecutive_losses(governor, agent):
    governor.record_close(agent, -0.1, NOW)
    assert not governor.in_cooldown(agent.id, NOW + 1)

    governor.record_close(agent, -0.2, NOW)
    assert governor.in_cooldown(agent.id, NOW + 1)

    # Below the raised bar (58 + 15)
    low = governor.authorize(agent, buy(confidence=70.0), now=NOW + 1)
    assert not low.approved
    assert "cooldown" in low.reason

    # Above it: approved at half size
    high = governor.authorize(agent, buy(size=0.6, confidence=80.0), now=NOW + 1)
    assert high.approved
    assert high.size == pytest.approx(0.3)

    # 3 cycles x 10 s
    assert not governor.in_cooldown(agent.id, NOW + 31)


def test_win_resets_loss_streak(governor, agent):
    governor.record_close(agent, -0.1, NOW)
    governor.record_close(agent, 0.3, NOW)
    governor.record_close(agent, -0.1, NOW)

    assert not governor.in_cooldown(agent.id, NOW + 1)
    assert governor.cooldown_status(agent.id, NOW + 1)["consecutive_losses"] == 1
