"""Raw values returned by the upstream signal feeds."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MarketPair:
    """Market data for one token's most liquid pair."""

    chain: str
    address: str
    symbol: str
    price: float
    pair_address: str = ""
    price_change_5m: float = 0.0
    price_change_1h: float = 0.0
    price_change_6h: float = 0.0
    price_change_24h: float = 0.0
    volume_1h: float = 0.0
    volume_24h: float = 0.0
    buys_1h: int = 0
    sells_1h: int = 0
    buys_24h: int = 0
    sells_24h: int = 0
    makers_24h: int = 0
    liquidity_usd: float = 0.0
    market_cap: float = 0.0
    created_at: Optional[float] = None  # epoch seconds
    boosted: bool = False
    trending: bool = False

    @property
    def key(self) -> str:
        return f"{self.chain}:{self.address}"


@dataclass(frozen=True)
class SmartMoneyFlow:
    """On-chain whale flow for a token."""

    whale_accumulation_score: float = 50.0
    net_flow: float = 0.0


@dataclass(frozen=True)
class SocialSignal:
    """Social sentiment metrics for a token."""

    galaxy_score: float = 50.0
    sentiment_score: float = 50.0
    social_spike: bool = False
    influencer_mentions: int = 0
    alt_rank: int = 0


@dataclass(frozen=True)
class NewsSentiment:
    """Aggregated news sentiment for a token."""

    sentiment: str = "neutral"  # "bullish" | "bearish" | "neutral"
    impact: str = "low"  # "high" | "low"
    mentions: int = 0


@dataclass(frozen=True)
class FearGreedReading:
    """Market-wide fear & greed index reading."""

    value: int = 50
    classification: str = "Neutral"
    trend: str = "stable"  # "improving" | "worsening" | "stable"


@dataclass(frozen=True)
class LiquidityHealth:
    """Liquidity pool health for a token."""

    health_score: float = 50.0
    is_draining: bool = False
    is_growing: bool = False
    change_percent: float = 0.0


@dataclass(frozen=True)
class SafetyReport:
    """Contract safety assessment for a token."""

    score: float = 50.0
    holder_count: int = 0
    top_holder_percent: Optional[float] = None
    creator_percent: Optional[float] = None
    is_honeypot: bool = False
