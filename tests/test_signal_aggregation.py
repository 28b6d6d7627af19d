import pytest
import requests

from conftest import FailingFeed, FakeMarketFeed, SlowFeed, StaticFeed

from agent_engine.data_acquisition import SignalAggregator
from agent_engine.data_fetchers.market_data_fetcher import MarketDataFetcher
from agent_engine.data_fetchers.signal_feeds import FearGreedFeed, LiquidityFeed, SmartMoneyFeed
from agent_engine.errors import UpstreamUnavailable
from agent_engine.feed_data import FearGreedReading
from agent_engine.indicator_calculators.technical_indicator_calculator import TechnicalIndicatorCalculator
from agent_engine.indicators.signal_scores import compute_market_breadth

T0 = 1_700_000_000.0


@pytest.fixture
def aggregator_factory(config):
    created = []

    def _make(pairs=(), feeds=(), market_fail=False):
        aggregator = SignalAggregator(config, market_feed=FakeMarketFeed(pairs, fail=market_fail), feeds=list(feeds))
        created.append(aggregator)
        return aggregator

    yield _make
    for aggregator in created:
        aggregator.close()


def test_same_cycle_returns_same_snapshot(aggregator_factory, make_pair):
    aggregator = aggregator_factory([make_pair("AAA"), make_pair("BBB", price=2.0)])

    first = aggregator.build_snapshot(T0)
    second = aggregator.build_snapshot(T0)

    assert first is second
    assert aggregator.market_feed.calls == 1
    assert set(first.tokens) == {"solana:AAA", "solana:BBB"}
    assert first.get("solana:BBB").price == 2.0
    assert aggregator.latest_snapshot() is first


def test_new_cycle_builds_new_snapshot(aggregator_factory, make_pair):
    aggregator = aggregator_factory([make_pair("AAA")])

    assert aggregator.build_snapshot(T0) is not aggregator.build_snapshot(T0 + 10)
    assert aggregator.market_feed.calls == 2


def test_snapshot_is_read_only(aggregator_factory, make_pair):
    snapshot = aggregator_factory([make_pair("AAA")]).build_snapshot(T0)

    with pytest.raises(TypeError):
        snapshot.tokens["solana:ZZZ"] = None
    with pytest.raises(AttributeError):
        snapshot.regime = "bull"


def test_failed_stream_degrades_to_neutral(aggregator_factory, make_pair):
    feeds = [StaticFeed("fear_greed", FearGreedReading(value=20, classification="Fear")), FailingFeed("social")]
    snapshot = aggregator_factory([make_pair("AAA")], feeds).build_snapshot(T0)

    assert snapshot.degraded_streams == ("social",)
    assert snapshot.fear_greed_value == 20
    assert snapshot.get("solana:AAA").social_score == pytest.approx(50.0)


def test_slow_stream_times_out(config, aggregator_factory, make_pair):
    config.stream_timeout_seconds = 0.1
    snapshot = aggregator_factory([make_pair("AAA")], [SlowFeed("news", delay=1.0)]).build_snapshot(T0)

    assert snapshot.degraded_streams == ("news",)
    assert "solana:AAA" in snapshot.tokens


def test_market_outage_gives_empty_snapshot(aggregator_factory):
    snapshot = aggregator_factory(market_fail=True).build_snapshot(T0)

    assert snapshot.tokens == {}
    assert snapshot.degraded_streams == ("market",)
    assert snapshot.regime == "neutral"


def test_price_history_accumulates_across_cycles(aggregator_factory, make_pair):
    aggregator = aggregator_factory([make_pair("AAA")])
    for i in range(3):
        aggregator.build_snapshot(T0 + i * 10)

    timestamps, prices, _ = aggregator.price_history.series("solana:AAA")
    assert timestamps == [T0, T0 + 10, T0 + 20]
    assert prices == [1.0, 1.0, 1.0]


def test_smart_money_and_liquidity_feeds(make_pair):
    pair = make_pair("AAA", liquidity_usd=100_000.0)

    flows = SmartMoneyFeed().fetch([pair])
    assert 0 <= flows[pair.key].whale_accumulation_score <= 100

    liquidity = LiquidityFeed()
    assert not liquidity.fetch([pair])[pair.key].is_draining
    drained = make_pair("AAA", liquidity_usd=50_000.0)
    health = liquidity.fetch([drained])[pair.key]
    assert health.is_draining
    assert health.change_percent == pytest.approx(-50.0)


def test_fear_greed_feed_parses_payload():
    class Response:
        def raise_for_status(self):
            pass

        def json(self):
            return {"data": [{"value": "30", "value_classification": "Fear"}, {"value": "20"}, {"value": "22"}]}

    class Session:
        def get(self, url, params=None, headers=None, timeout=None):
            return Response()

    reading = FearGreedFeed("https://example.test/fng", 1.0, session=Session()).fetch([])

    assert reading.value == 30
    assert reading.classification == "Fear"
    assert reading.trend == "improving"


def test_indicators_on_rising_and_flat_history():
    calculator = TechnicalIndicatorCalculator()

    flat = calculator.compute_indicators([1.0] * 30)
    assert flat.rsi_14 == pytest.approx(50.0)
    assert flat.ema_trend_alignment == "mixed"

    rising = calculator.compute_indicators([1.0 + 0.01 * i for i in range(60)])
    assert rising.rsi_14 == pytest.approx(100.0)
    assert rising.ema_trend_alignment == "bullish"
    assert rising.macd_line > 0

    assert calculator.compute_indicators([1.0, 1.1]).rsi_14 == 50.0


def test_breadth_needs_five_tokens(make_token):
    assert compute_market_breadth([make_token(str(i)) for i in range(4)]) == (50.0, "neutral")

    bullish = [make_token(str(i), score=80.0, price_change_1h=5.0) for i in range(10)]
    breadth, regime = compute_market_breadth(bullish)
    assert breadth > 50


class RoutedSession:
    """Serves canned JSON by URL suffix."""

    def __init__(self, routes):
        self.routes = routes
        self.headers = {}

    def get(self, url, timeout=None, **kwargs):
        for suffix, body in self.routes.items():
            if url.endswith(suffix):
                class Response:
                    def raise_for_status(self):
                        pass

                    def json(self, body=body):
                        return body

                return Response()
        raise requests.exceptions.ConnectionError(url)


def test_market_fetcher_keeps_most_liquid_pair(config):
    boosts = [
        {"chainId": "solana", "tokenAddress": "AAA"},
        {"chainId": "base", "tokenAddress": "BBB"},
    ]
    pairs = [
        {"chainId": "solana", "baseToken": {"address": "AAA", "symbol": "AAA"}, "priceUsd": "1.5",
         "liquidity": {"usd": 10_000}, "txns": {"h24": {"buys": 10, "sells": 5}}},
        {"chainId": "solana", "baseToken": {"address": "AAA", "symbol": "AAA"}, "priceUsd": "1.6",
         "liquidity": {"usd": 90_000}, "pairCreatedAt": 1_700_000_000_000},
        {"chainId": "solana", "baseToken": {"address": "ZZZ"}, "priceUsd": None},
    ]
    session = RoutedSession({"token-boosts/top/v1": boosts, "tokens/v1/solana/AAA": pairs})

    fetched = MarketDataFetcher(config, session=session).fetch_pairs()

    assert len(fetched) == 1
    assert fetched[0].key == "solana:AAA"
    assert fetched[0].price == 1.6
    assert fetched[0].created_at == 1_700_000_000.0


def test_market_fetcher_failure_is_upstream_unavailable(config):
    with pytest.raises(UpstreamUnavailable):
        MarketDataFetcher(config, session=RoutedSession({})).fetch_pairs()
