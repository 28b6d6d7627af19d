"""Signal aggregation layer: builds the shared per-cycle market snapshot."""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from agent_engine.caches.price_history import PriceHistory
from agent_engine.caches.snapshot_cache import IndicatorCache, SnapshotCache
from agent_engine.config import Config
from agent_engine.data_fetchers.market_data_fetcher import MarketDataFeed, MarketDataFetcher
from agent_engine.data_fetchers.signal_feeds import (
    FearGreedFeed,
    LiquidityFeed,
    NewsFeed,
    SafetyFeed,
    SignalFeed,
    SmartMoneyFeed,
    SocialFeed,
)
from agent_engine.feed_data import FearGreedReading, MarketPair
from agent_engine.indicator_calculators.technical_indicator_calculator import TechnicalIndicatorCalculator
from agent_engine.indicators.signal_scores import compute_market_breadth
from agent_engine.models import SignalSnapshot, TokenSignals
from agent_engine.snapshot_builders.token_signal_builder import TokenSignalBuilder


logger = logging.getLogger(__name__)

MARKET_STREAM = "market"


def default_feeds(config: Config) -> List[SignalFeed]:
    """Build the standard set of upstream signal feeds from configuration."""
    timeout = config.stream_timeout_seconds
    return [
        FearGreedFeed(config.fear_greed_url, timeout),
        SmartMoneyFeed(),
        LiquidityFeed(),
        SafetyFeed(config.safety_url, timeout, config.trading_chain),
        SocialFeed(config.social_url, timeout, config.lunarcrush_api_key),
        NewsFeed(config.news_url, timeout, config.cryptopanic_api_key),
    ]


class SignalAggregator:
    """Fetches every signal stream once per cycle and builds an immutable snapshot."""

    def __init__(
        self,
        config: Config,
        market_feed: Optional[MarketDataFeed] = None,
        feeds: Optional[Sequence[SignalFeed]] = None,
        calculator: Optional[TechnicalIndicatorCalculator] = None,
        snapshot_cache: Optional[SnapshotCache] = None,
        indicator_cache: Optional[IndicatorCache] = None,
        price_history: Optional[PriceHistory] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the aggregator with its upstream collaborators.

        Args:
            config: Configuration object
            market_feed: Token universe source (defaults to MarketDataFetcher)
            feeds: Independent signal feeds (defaults to default_feeds(config))
            calculator: Technical indicator calculator
            snapshot_cache: Per-cycle snapshot cache
            indicator_cache: Per-token indicator TTL cache
            price_history: Per-token tick history
            clock: Time source for the indicator cache
        """
        self.config = config
        self.market_feed = market_feed if market_feed is not None else MarketDataFetcher(config)
        self.feeds = list(feeds) if feeds is not None else default_feeds(config)
        self.calculator = calculator or TechnicalIndicatorCalculator()
        self.snapshot_cache = snapshot_cache or SnapshotCache(config.snapshot_cache_size)
        self.indicator_cache = indicator_cache or IndicatorCache(config.indicator_cache_ttl_seconds, clock)
        self.price_history = price_history or PriceHistory(config.price_history_max_bars)
        self.token_builder = TokenSignalBuilder()

        self._executor = ThreadPoolExecutor(
            max_workers=max(1, len(self.feeds)),
            thread_name_prefix="signal-feed",
        )

    def build_snapshot(self, cycle_time: float) -> SignalSnapshot:
        """
        Return the snapshot for a cycle, building it on first request.

        Args:
            cycle_time: Cycle timestamp (epoch seconds)

        Returns:
            The same SignalSnapshot object for every call with this cycle time
        """
        return self.snapshot_cache.get_or_build(cycle_time, self._build)

    def latest_snapshot(self) -> Optional[SignalSnapshot]:
        return self.snapshot_cache.latest()

    def _fetch_streams(self, pairs: List[MarketPair]) -> Tuple[Dict[str, Any], List[str]]:
        """
        Query every feed concurrently, bounded by the stream timeout.

        Returns:
            Tuple of (values by feed name, names of degraded feeds)
        """
        futures = {self._executor.submit(feed.fetch, pairs): feed for feed in self.feeds}
        done, _ = wait(futures, timeout=self.config.stream_timeout_seconds)

        values: Dict[str, Any] = {}
        degraded: List[str] = []
        for future, feed in futures.items():
            if future not in done:
                logger.warning(f"Signal stream {feed.name} timed out, using neutral values")
                future.cancel()
                values[feed.name] = feed.neutral()
                degraded.append(feed.name)
                continue
            try:
                values[feed.name] = future.result()
            except Exception as e:
                logger.warning(f"Signal stream {feed.name} failed: {e}")
                values[feed.name] = feed.neutral()
                degraded.append(feed.name)

        return values, sorted(degraded)

    def _indicators_for(self, key: str, prices: List[float], volumes: List[float]):
        cached = self.indicator_cache.get_cached_indicators(key)
        if cached is not None:
            logger.debug(f"Using cached indicators for {key}")
            return cached
        indicators = self.calculator.compute_indicators(prices, volumes)
        self.indicator_cache.update_cache(key, indicators)
        return indicators

    def _build(self, cycle_time: float) -> SignalSnapshot:
        try:
            pairs = self.market_feed.fetch_pairs()
        except Exception as e:
            logger.error(f"Market data unavailable for cycle {cycle_time}: {e}")
            return SignalSnapshot(cycle_time=cycle_time, degraded_streams=(MARKET_STREAM,))

        values, degraded = self._fetch_streams(pairs)
        fear_greed = values.get("fear_greed") or FearGreedReading()
        smart_money = values.get("smart_money") or {}
        liquidity = values.get("liquidity") or {}
        safety = values.get("safety") or {}
        social = values.get("social") or {}
        news = values.get("news") or {}

        tokens: Dict[str, TokenSignals] = {}
        for pair in pairs:
            try:
                self.price_history.record(pair.key, cycle_time, pair.price, pair.volume_1h)
                timestamps, prices, volumes = self.price_history.series(pair.key)
                technicals = self._indicators_for(pair.key, prices, volumes)
                tokens[pair.key] = self.token_builder.build(
                    pair,
                    technicals,
                    timestamps,
                    prices,
                    volumes,
                    now=cycle_time,
                    fear_greed_value=fear_greed.value,
                    smart_money=smart_money.get(pair.key),
                    social=social.get(pair.key),
                    news=news.get(pair.key),
                    liquidity=liquidity.get(pair.key),
                    safety=safety.get(pair.key),
                )
            except Exception as e:
                logger.error(f"Failed to build signals for {pair.symbol} ({pair.key}): {e}")

        breadth, regime = compute_market_breadth(tokens.values())

        snapshot = SignalSnapshot(
            cycle_time=cycle_time,
            regime=regime,
            breadth_score=breadth,
            fear_greed_value=fear_greed.value,
            fear_greed_classification=fear_greed.classification,
            tokens=MappingProxyType(tokens),
            degraded_streams=tuple(degraded),
        )

        if degraded:
            logger.warning(f"Snapshot for cycle {cycle_time} degraded: {', '.join(degraded)}")
        logger.info(
            f"Built snapshot for cycle {cycle_time}: {len(tokens)} tokens, "
            f"regime={regime}, breadth={breadth:.0f}, FGI={fear_greed.value}"
        )
        return snapshot

    def close(self) -> None:
        self._executor.shutdown(wait=False)
