"""Read-only upstream signal feeds.

Each feed returns its values for the requested tokens or raises
UpstreamUnavailable. The aggregator replaces a failed feed with the feed's
neutral value, so feeds never need to fabricate defaults themselves.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Sequence

import requests

from agent_engine.errors import UpstreamUnavailable
from agent_engine.feed_data import (
    FearGreedReading,
    LiquidityHealth,
    MarketPair,
    NewsSentiment,
    SafetyReport,
    SmartMoneyFlow,
    SocialSignal,
)

logger = logging.getLogger(__name__)


class SignalFeed(ABC):
    """A single independent signal stream."""

    name: str = "feed"

    @abstractmethod
    def fetch(self, pairs: Sequence[MarketPair]) -> Any:
        """Return this stream's values for the given tokens."""

    def neutral(self) -> Any:
        """Value used when the stream is unavailable."""
        return {}


class HttpFeed(SignalFeed):
    """Base class for feeds backed by a JSON HTTP API."""

    def __init__(self, base_url: str, timeout: float, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _get_json(self, url: str, params: Optional[Dict[str, Any]] = None,
                  headers: Optional[Dict[str, str]] = None) -> Any:
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise UpstreamUnavailable(f"{self.name} request failed: {e}") from e


# ---------------------------------------------------------------------------
# Fear & greed
# ---------------------------------------------------------------------------

def classify_fear_greed(value: int) -> str:
    if value <= 10:
        return "Extreme Fear"
    if value <= 25:
        return "Fear"
    if value <= 45:
        return "Neutral-Fear"
    if value <= 55:
        return "Neutral"
    if value <= 75:
        return "Greed"
    if value <= 90:
        return "Extreme Greed"
    return "Max Greed"


def fear_greed_trend(values: Sequence[int]) -> str:
    """Compare the latest reading (first) with the mean of the latest three."""
    if len(values) < 3:
        return "stable"
    avg = sum(values[:3]) / 3
    if values[0] > avg + 5:
        return "improving"
    if values[0] < avg - 5:
        return "worsening"
    return "stable"


class FearGreedFeed(HttpFeed):
    """Market-wide fear & greed index (alternative.me format)."""

    name = "fear_greed"

    def fetch(self, pairs: Sequence[MarketPair]) -> FearGreedReading:
        payload = self._get_json(self.base_url + "/", params={"limit": 7, "format": "json"})
        data = payload.get("data") if isinstance(payload, dict) else None
        if not data:
            raise UpstreamUnavailable("fear_greed returned no data")

        values = []
        for item in data:
            try:
                values.append(int(item.get("value")))
            except (TypeError, ValueError):
                values.append(50)

        current = values[0]
        classification = data[0].get("value_classification") or classify_fear_greed(current)
        return FearGreedReading(value=current, classification=classification, trend=fear_greed_trend(values))

    def neutral(self) -> FearGreedReading:
        return FearGreedReading()


# ---------------------------------------------------------------------------
# Smart money flow
# ---------------------------------------------------------------------------

def whale_accumulation_score(pair: MarketPair) -> float:
    """Score whale accumulation from 24h buy ratio, turnover, volume and makers."""
    total = pair.buys_24h + pair.sells_24h
    if total == 0:
        return 50.0

    buy_ratio = pair.buys_24h / total
    vol_to_liq = pair.volume_24h / pair.liquidity_usd if pair.liquidity_usd > 0 else 0.0
    score = 50.0

    if buy_ratio > 0.70:
        score += 20
    elif buy_ratio > 0.60:
        score += 12
    elif buy_ratio > 0.55:
        score += 6
    elif buy_ratio < 0.35:
        score -= 15
    elif buy_ratio < 0.42:
        score -= 8

    if vol_to_liq > 3:
        score += 10
    elif vol_to_liq > 1.5:
        score += 5

    if pair.volume_24h > 5_000_000:
        score += 8
    elif pair.volume_24h > 1_000_000:
        score += 4

    if pair.makers_24h > 500:
        score += 5
    elif pair.makers_24h > 200:
        score += 3

    return max(0.0, min(100.0, score))


class SmartMoneyFeed(SignalFeed):
    """On-chain flow derived from per-pair transaction activity."""

    name = "smart_money"

    def fetch(self, pairs: Sequence[MarketPair]) -> Dict[str, SmartMoneyFlow]:
        flows = {}
        for pair in pairs:
            txns = pair.buys_24h + pair.sells_24h
            avg_trade = pair.volume_24h / max(1, txns)
            flows[pair.key] = SmartMoneyFlow(
                whale_accumulation_score=whale_accumulation_score(pair),
                net_flow=round((pair.buys_24h - pair.sells_24h) * avg_trade),
            )
        return flows


# ---------------------------------------------------------------------------
# Liquidity health
# ---------------------------------------------------------------------------

def liquidity_health_score(liquidity: float, change_percent: float, vol_to_liq: float,
                           growing: bool, draining: bool) -> float:
    score = 50.0

    if liquidity > 500_000:
        score += 15
    elif liquidity > 100_000:
        score += 10
    elif liquidity > 50_000:
        score += 5
    elif liquidity < 10_000:
        score -= 15

    if growing:
        score += 12
    if draining:
        score -= 15

    if vol_to_liq > 10:
        score -= 10
    elif vol_to_liq > 5:
        score -= 5
    elif vol_to_liq > 1:
        score += 5

    if vol_to_liq > 10:
        # abnormal turnover
        score -= 8

    if change_percent > 50:
        score += 8
    elif change_percent < -30:
        score -= 12

    return max(0.0, min(100.0, score))


class LiquidityFeed(SignalFeed):
    """Tracks pool liquidity between cycles and scores its health."""

    name = "liquidity"

    def __init__(self, drain_threshold_pct: float = -15.0, growth_threshold_pct: float = 15.0):
        self.drain_threshold_pct = drain_threshold_pct
        self.growth_threshold_pct = growth_threshold_pct
        self._previous: Dict[str, float] = {}
        self._lock = threading.Lock()

    def fetch(self, pairs: Sequence[MarketPair]) -> Dict[str, LiquidityHealth]:
        health = {}
        with self._lock:
            for pair in pairs:
                previous = self._previous.get(pair.key)
                change = (pair.liquidity_usd - previous) / previous * 100 if previous else 0.0
                draining = change <= self.drain_threshold_pct
                growing = change >= self.growth_threshold_pct
                vol_to_liq = pair.volume_24h / pair.liquidity_usd if pair.liquidity_usd > 0 else 0.0
                health[pair.key] = LiquidityHealth(
                    health_score=liquidity_health_score(pair.liquidity_usd, change, vol_to_liq, growing, draining),
                    is_draining=draining,
                    is_growing=growing,
                    change_percent=round(change, 2),
                )
                self._previous[pair.key] = pair.liquidity_usd

                if draining:
                    logger.info(f"Liquidity draining for {pair.symbol}: {change:.1f}%")
        return health


# ---------------------------------------------------------------------------
# Safety
# ---------------------------------------------------------------------------

GOPLUS_CHAIN_IDS = {"ethereum": "1", "bsc": "56", "base": "8453", "arbitrum": "42161", "polygon": "137"}


def _flag(data: Dict[str, Any], key: str) -> bool:
    return str(data.get(key, "0")) == "1"


def _num(data: Dict[str, Any], key: str) -> float:
    try:
        return float(data.get(key) or 0)
    except (TypeError, ValueError):
        return 0.0


def security_score(data: Dict[str, Any]) -> float:
    """
    Contract safety score from a GoPlus token-security record.

    Args:
        data: Token security fields ("0"/"1" flags, fractional taxes and percents)

    Returns:
        Score 0-100 (higher is safer)
    """
    score = 100.0

    if _flag(data, "is_honeypot"):
        score -= 40
    if _flag(data, "cannot_buy"):
        score -= 20
    if _flag(data, "cannot_sell_all"):
        score -= 25

    buy_tax = _num(data, "buy_tax")
    sell_tax = _num(data, "sell_tax")
    if buy_tax > 0.1:
        score -= 15
    elif buy_tax > 0.05:
        score -= 8
    if sell_tax > 0.1:
        score -= 15
    elif sell_tax > 0.05:
        score -= 8

    if not _flag(data, "is_open_source"):
        score -= 12
    for key, penalty in (("is_proxy", 5), ("is_mintable", 10), ("hidden_owner", 12),
                         ("can_take_back_ownership", 10), ("transfer_pausable", 8),
                         ("selfdestruct", 15), ("external_call", 5), ("is_blacklisted", 5),
                         ("is_airdrop_scam", 20)):
        if _flag(data, key):
            score -= penalty

    creator_pct = _num(data, "creator_percent") * 100
    if creator_pct > 20:
        score -= 15
    elif creator_pct > 10:
        score -= 8
    elif creator_pct > 5:
        score -= 4

    lp_holders = data.get("lp_holders") or []
    locked = sum(_num(h, "percent") for h in lp_holders if str(h.get("is_locked")) == "1")
    if lp_holders and locked < 0.5:
        score -= 10

    if _flag(data, "trust_list"):
        score += 10

    return max(0.0, min(100.0, score))


class SafetyFeed(HttpFeed):
    """Token contract safety (GoPlus format), cached per token."""

    name = "safety"

    def __init__(self, base_url: str, timeout: float, chain: str, ttl_seconds: float = 3600.0,
                 session: Optional[requests.Session] = None):
        super().__init__(base_url, timeout, session)
        self.chain = chain
        self.ttl_seconds = ttl_seconds
        self._cache: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def _url(self) -> str:
        if self.chain == "solana":
            return f"{self.base_url}/solana/token_security"
        chain_id = GOPLUS_CHAIN_IDS.get(self.chain)
        if chain_id is None:
            raise UpstreamUnavailable(f"safety feed does not support chain '{self.chain}'")
        return f"{self.base_url}/token_security/{chain_id}"

    def fetch(self, pairs: Sequence[MarketPair]) -> Dict[str, SafetyReport]:
        now = time.time()
        reports: Dict[str, SafetyReport] = {}
        missing = []

        with self._lock:
            for pair in pairs:
                cached = self._cache.get(pair.key)
                if cached and now - cached["timestamp"] < self.ttl_seconds:
                    reports[pair.key] = cached["report"]
                else:
                    missing.append(pair)

        if missing:
            payload = self._get_json(self._url(), params={
                "contract_addresses": ",".join(p.address for p in missing)
            })
            result = payload.get("result") if isinstance(payload, dict) else None
            if not isinstance(result, dict):
                raise UpstreamUnavailable("safety feed returned no result")

            by_address = {addr.lower(): data for addr, data in result.items()}
            with self._lock:
                for pair in missing:
                    data = by_address.get(pair.address.lower())
                    if data is None:
                        continue
                    holders = data.get("holders") or []
                    top_holder = _num(holders[0], "percent") * 100 if holders else None
                    report = SafetyReport(
                        score=security_score(data),
                        holder_count=int(_num(data, "holder_count")),
                        top_holder_percent=top_holder,
                        creator_percent=_num(data, "creator_percent") * 100,
                        is_honeypot=_flag(data, "is_honeypot"),
                    )
                    self._cache[pair.key] = {"report": report, "timestamp": now}
                    reports[pair.key] = report

        return reports


# ---------------------------------------------------------------------------
# Social sentiment
# ---------------------------------------------------------------------------

class SocialFeed(HttpFeed):
    """Social sentiment per symbol (LunarCrush format)."""

    name = "social"

    def __init__(self, base_url: str, timeout: float, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        super().__init__(base_url, timeout, session)
        self.api_key = api_key
        self._previous_interactions: Dict[str, float] = {}

    def fetch(self, pairs: Sequence[MarketPair]) -> Dict[str, SocialSignal]:
        if not self.api_key:
            logger.debug("Social feed has no API key, skipping")
            return {}

        payload = self._get_json(
            f"{self.base_url}/coins/list/v1",
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise UpstreamUnavailable("social feed returned no data")

        by_symbol = {str(item.get("symbol", "")).upper(): item for item in data}
        signals = {}
        for pair in pairs:
            item = by_symbol.get(pair.symbol.upper())
            if item is None:
                continue
            interactions = float(item.get("interactions_24h") or 0)
            previous = self._previous_interactions.get(pair.key)
            self._previous_interactions[pair.key] = interactions
            signals[pair.key] = SocialSignal(
                galaxy_score=float(item.get("galaxy_score") or 50),
                sentiment_score=float(item.get("sentiment") or 50),
                social_spike=bool(previous and interactions > previous * 3),
                influencer_mentions=int(item.get("num_contributors") or 0),
                alt_rank=int(item.get("alt_rank") or 0),
            )
        return signals


# ---------------------------------------------------------------------------
# News sentiment
# ---------------------------------------------------------------------------

class NewsFeed(HttpFeed):
    """Headline sentiment per currency code (CryptoPanic format)."""

    name = "news"

    def __init__(self, base_url: str, timeout: float, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        super().__init__(base_url, timeout, session)
        self.api_key = api_key

    def fetch(self, pairs: Sequence[MarketPair]) -> Dict[str, NewsSentiment]:
        if not self.api_key:
            logger.debug("News feed has no API key, skipping")
            return {}

        payload = self._get_json(self.base_url + "/", params={
            "auth_token": self.api_key, "public": "true", "kind": "news",
        })
        results = payload.get("results") if isinstance(payload, dict) else None
        if not isinstance(results, list):
            raise UpstreamUnavailable("news feed returned no results")

        tally: Dict[str, Dict[str, int]] = {}
        for post in results:
            votes = post.get("votes") or {}
            for currency in post.get("currencies") or []:
                code = str(currency.get("code", "")).upper()
                entry = tally.setdefault(code, {"net": 0, "important": 0, "mentions": 0})
                entry["net"] += int(votes.get("positive") or 0) - int(votes.get("negative") or 0)
                entry["important"] += int(votes.get("important") or 0)
                entry["mentions"] += 1

        sentiments = {}
        for pair in pairs:
            entry = tally.get(pair.symbol.upper())
            if entry is None:
                continue
            if entry["net"] > 2:
                sentiment = "bullish"
            elif entry["net"] < -2:
                sentiment = "bearish"
            else:
                sentiment = "neutral"
            impact = "high" if entry["important"] >= 3 or entry["mentions"] >= 5 else "low"
            sentiments[pair.key] = NewsSentiment(sentiment=sentiment, impact=impact, mentions=entry["mentions"])
        return sentiments
