"""Shared fixtures and fakes for the engine tests."""

import threading
import time
from types import MappingProxyType
from typing import Dict, List, Optional, Sequence

import pytest

from agent_engine.config import Config
from agent_engine.data_fetchers.market_data_fetcher import MarketDataFeed
from agent_engine.data_fetchers.signal_feeds import SignalFeed
from agent_engine.errors import ExecutionFailed, PersistenceError, UpstreamUnavailable
from agent_engine.feed_data import MarketPair
from agent_engine.managers.activity_journal import ActivityJournal
from agent_engine.memory.agent_memory import AgentMemory
from agent_engine.memory.learning_store import LearningStore
from agent_engine.models import Agent, ExecutionResult, SignalSnapshot, TechnicalIndicators, TokenSignals
from agent_engine.persistence.mutation_store import MutationStore
from agent_engine.trade_executor import PaperSwapClient, SwapClient, TradeExecutor


class FakeMarketFeed(MarketDataFeed):
    """Returns a fixed token universe, or raises when told to."""

    def __init__(self, pairs: Sequence[MarketPair] = (), fail: bool = False):
        self.pairs = list(pairs)
        self.fail = fail
        self.calls = 0

    def fetch_pairs(self) -> List[MarketPair]:
        self.calls += 1
        if self.fail:
            raise UpstreamUnavailable("market data down")
        return list(self.pairs)


class StaticFeed(SignalFeed):
    def __init__(self, name: str, value=None):
        self.name = name
        self.value = value if value is not None else {}

    def fetch(self, pairs):
        return self.value


class FailingFeed(SignalFeed):
    def __init__(self, name: str):
        self.name = name

    def fetch(self, pairs):
        raise UpstreamUnavailable(f"{self.name} unavailable")


class SlowFeed(SignalFeed):
    def __init__(self, name: str, delay: float):
        self.name = name
        self.delay = delay

    def fetch(self, pairs):
        time.sleep(self.delay)
        return {}


class RecordingSwapClient(SwapClient):
    """Zero-slippage fills; can be switched to fail every trade."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls: List[tuple] = []
        self._lock = threading.Lock()

    def execute_trade(self, agent, token_key, side, size, price) -> ExecutionResult:
        with self._lock:
            self.calls.append((agent.id, token_key, side, size, price))
        if self.fail:
            raise ExecutionFailed("swap rejected")
        return ExecutionResult(executed=True, order_id=f"fake-{len(self.calls)}",
                               filled_size=size, fill_price=price, error=None)


class FlakyStore(MutationStore):
    """Fails the first `failures` writes, then stores batches in memory."""

    def __init__(self, failures: int = 0, error_type: type = PersistenceError):
        self.failures = failures
        self.error_type = error_type
        self.attempts = 0
        self.batches: List[list] = []

    def write_batch(self, mutations):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error_type("disk full")
        self.batches.append(list(mutations))


@pytest.fixture
def config(tmp_path):
    return Config(
        persist_dir=str(tmp_path / "data"),
        loop_interval_seconds=10,
        agent_deadline_seconds=2.0,
        stream_timeout_seconds=1.0,
        max_concurrent_agents=4,
        paper_slippage_bps=0.0,
    )


@pytest.fixture
def agent():
    return Agent(
        id=1,
        name="alpha",
        wallet_address="wallet-1",
        chain="solana",
        strategy="balanced",
        max_position_size=1.0,
        stop_loss_percent=10.0,
        take_profit_percent=50.0,
        max_daily_trades=5,
    )


@pytest.fixture
def make_token():
    """Factory for a token that passes every balanced entry filter."""

    def _make(address: str = "AAA", price: float = 1.0, score: float = 80.0, **overrides) -> TokenSignals:
        fields = dict(
            key=f"solana:{address}",
            symbol=address,
            chain="solana",
            address=address,
            price=price,
            liquidity_usd=250_000.0,
            volume_24h=500_000.0,
            market_cap=2_000_000.0,
            momentum_score=score,
            short_term_momentum=score,
            volume_score=score,
            buy_pressure_score=score,
            liquidity_score=score,
            safety_score=score,
            rug_risk_score=100.0 - score,
            smart_money_score=score,
            social_score=score,
            news_score=score,
            fear_greed_score=score,
            volatility=50.0,
            technicals=TechnicalIndicators(trend_strength=score),
        )
        fields.update(overrides)
        return TokenSignals(**fields)

    return _make


@pytest.fixture
def make_snapshot():
    def _make(cycle_time: float, tokens: Sequence[TokenSignals] = (), regime: str = "neutral") -> SignalSnapshot:
        return SignalSnapshot(
            cycle_time=cycle_time,
            regime=regime,
            tokens=MappingProxyType({t.key: t for t in tokens}),
        )

    return _make


@pytest.fixture
def make_pair():
    def _make(address: str = "AAA", price: float = 1.0, **overrides) -> MarketPair:
        fields = dict(
            chain="solana",
            address=address,
            symbol=address,
            price=price,
            liquidity_usd=250_000.0,
            volume_24h=500_000.0,
            volume_1h=20_000.0,
            buys_24h=600,
            sells_24h=400,
            market_cap=2_000_000.0,
        )
        fields.update(overrides)
        return MarketPair(**fields)

    return _make


@pytest.fixture
def learning_store():
    store = LearningStore(blacklist_ttl_seconds=3600)
    yield store
    store.stop()


@pytest.fixture
def memory():
    return AgentMemory()


@pytest.fixture
def journal():
    return ActivityJournal()


@pytest.fixture
def swap_client():
    return RecordingSwapClient()


@pytest.fixture
def executor(config, swap_client):
    return TradeExecutor(config, client=swap_client)


@pytest.fixture
def paper_executor(config):
    return TradeExecutor(config, client=PaperSwapClient(slippage_bps=0))
