import pytest

from agent_engine.config import Config

ENV_VARS = [
    "RUN_MODE", "EXECUTION_SERVICE_URL", "LOOP_INTERVAL_SECONDS", "MAX_CONCURRENT_AGENTS",
    "AGENT_DEADLINE_SECONDS", "STREAM_TIMEOUT_SECONDS", "PRICE_HISTORY_MAX_BARS",
    "COOLDOWN_SIZE_FACTOR", "PERSIST_DIR", "PARTIAL_PROFIT_TAKING", "TRADING_CHAIN",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.setattr("agent_engine.config.load_dotenv", lambda *args, **kwargs: False)
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    config = Config.from_env()

    assert config.run_mode == "paper"
    assert not config.is_live
    assert config.loop_interval_seconds == 10
    assert config.agent_deadline_seconds == 8.0
    assert config.trading_chain == "solana"
    assert config.partial_profit_taking


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("RUN_MODE", "LIVE")
    monkeypatch.setenv("EXECUTION_SERVICE_URL", "http://executor:3000")
    monkeypatch.setenv("LOOP_INTERVAL_SECONDS", "30")
    monkeypatch.setenv("AGENT_DEADLINE_SECONDS", "12.5")
    monkeypatch.setenv("PARTIAL_PROFIT_TAKING", "no")
    monkeypatch.setenv("PERSIST_DIR", "/tmp/engine")

    config = Config.from_env()

    assert config.is_live
    assert config.execution_service_url == "http://executor:3000"
    assert config.loop_interval_seconds == 30
    assert config.agent_deadline_seconds == 12.5
    assert not config.partial_profit_taking
    assert config.persist_dir == "/tmp/engine"


def test_live_mode_requires_execution_service(monkeypatch):
    monkeypatch.setenv("RUN_MODE", "live")

    with pytest.raises(ValueError, match="EXECUTION_SERVICE_URL"):
        Config.from_env()


@pytest.mark.parametrize("name,value,message", [
    ("LOOP_INTERVAL_SECONDS", "abc", "must be a valid integer"),
    ("AGENT_DEADLINE_SECONDS", "fast", "must be a valid float"),
    ("RUN_MODE", "backtest", "RUN_MODE must be"),
    ("MAX_CONCURRENT_AGENTS", "0", "MAX_CONCURRENT_AGENTS must be positive"),
    ("AGENT_DEADLINE_SECONDS", "60", "AGENT_DEADLINE_SECONDS"),
    ("PRICE_HISTORY_MAX_BARS", "20", "at least 60"),
    ("COOLDOWN_SIZE_FACTOR", "1.5", "COOLDOWN_SIZE_FACTOR"),
])
def test_invalid_values(monkeypatch, name, value, message):
    monkeypatch.setenv(name, value)

    with pytest.raises(ValueError, match=message):
        Config.from_env()
