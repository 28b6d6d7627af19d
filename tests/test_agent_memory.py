import json

import pytest

from agent_engine.memory.agent_memory import MAX_THRESHOLD_OFFSET, AgentMemory

NOW = 1_700_000_000.0


def test_losses_raise_threshold_and_shrink_size():
    memory = AgentMemory()
    for i in range(3):
        memory.record_close(agent_id=1, token_key=f"solana:T{i}", pnl_percent=-4.0, ts=NOW + i)

    # 3 + 3 + 5
    assert memory.threshold_offset(1) == pytest.approx(11.0)
    assert memory.streaks(1) == {"win_streak": 0, "loss_streak": 3}
    # 3-loss streak (0.5) and -12% over the last day (x0.8)
    assert memory.size_multiplier(1, NOW + 10) == pytest.approx(0.4)


def test_threshold_offset_is_capped():
    memory = AgentMemory()
    for i in range(10):
        memory.record_close(agent_id=1, token_key="solana:AAA", pnl_percent=-1.0, ts=NOW + i)

    assert memory.threshold_offset(1) == MAX_THRESHOLD_OFFSET


def test_win_streak_lowers_threshold():
    memory = AgentMemory()
    for i in range(3):
        memory.record_close(agent_id=1, token_key="solana:AAA", pnl_percent=5.0, ts=NOW + i)

    assert memory.threshold_offset(1) == pytest.approx(-2.0)
    assert memory.size_multiplier(1, NOW + 10) == pytest.approx(1.1)


def test_losing_token_blocked_for_a_day():
    memory = AgentMemory(block_seconds=3600)
    memory.record_close(agent_id=1, token_key="solana:AAA", pnl_percent=-2.0, ts=NOW)

    assert memory.is_token_blocked(1, "solana:AAA", NOW + 60)
    assert not memory.is_token_blocked(1, "solana:BBB", NOW + 60)
    assert not memory.is_token_blocked(2, "solana:AAA", NOW + 60)
    assert not memory.is_token_blocked(1, "solana:AAA", NOW + 3601)


def test_unknown_agent_defaults():
    memory = AgentMemory()

    assert memory.threshold_offset(99) == 0.0
    assert memory.size_multiplier(99, NOW) == 1.0
    assert memory.summary(99)["recent_closes"] == 0


def test_persists_across_instances(tmp_path):
    path = tmp_path / "memory" / "agent_memory.json"
    memory = AgentMemory(str(path))
    memory.record_close(agent_id=7, token_key="solana:AAA", pnl_percent=-4.2, ts=NOW)

    raw = json.loads(path.read_text())
    assert raw["agents"]["7"]["loss_streak"] == 1

    reloaded = AgentMemory(str(path))
    assert reloaded.threshold_offset(7) == pytest.approx(3.0)
    assert reloaded.is_token_blocked(7, "solana:AAA", NOW + 1)


def test_corrupt_file_starts_fresh(tmp_path):
    path = tmp_path / "agent_memory.json"
    path.write_text("{not json")

    memory = AgentMemory(str(path))

    assert memory.threshold_offset(1) == 0.0


def test_forget_drops_agent(tmp_path):
    memory = AgentMemory(str(tmp_path / "agent_memory.json"))
    memory.record_close(agent_id=1, token_key="solana:AAA", pnl_percent=-1.0, ts=NOW)

    memory.forget(1)

    assert memory.threshold_offset(1) == 0.0
    assert not memory.is_token_blocked(1, "solana:AAA", NOW + 1)


def test_expired_lost_tokens_are_pruned(tmp_path):
    path = tmp_path / "agent_memory.json"
    memory = AgentMemory(str(path), block_seconds=3600)
    memory.record_close(agent_id=1, token_key="solana:AAA", pnl_percent=-2.0, ts=NOW)
    memory.record_close(agent_id=1, token_key="solana:BBB", pnl_percent=-2.0, ts=NOW + 1800)

    memory.record_close(agent_id=1, token_key="solana:CCC", pnl_percent=5.0, ts=NOW + 4000)

    assert memory.summary(1)["blocked_tokens"] == ["solana:BBB"]
    raw = json.loads(path.read_text())
    assert raw["agents"]["1"]["lost_tokens"] == {"solana:BBB": NOW + 1800}
