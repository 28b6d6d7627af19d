"""Data models for the agent execution engine."""

import time
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple


# Position lifecycle states ("none" is the absence of a record)
POSITION_OPENING = "opening"
POSITION_OPEN = "open"
POSITION_CLOSING = "closing"
POSITION_CLOSED = "closed"

ACTIVE_POSITION_STATES = (POSITION_OPENING, POSITION_OPEN, POSITION_CLOSING)

AGENT_RUNNING = "running"
AGENT_STOPPED = "stopped"

STRATEGIES = ("conservative", "balanced", "aggressive", "degen")


@dataclass
class Agent:
    """A trading agent and its running counters."""

    id: int
    name: str
    wallet_address: str
    chain: str = "solana"
    strategy: str = "balanced"  # "conservative" | "balanced" | "aggressive" | "degen"
    status: str = AGENT_STOPPED  # "running" | "stopped"
    max_position_size: float = 1.0  # quote-currency notional per position
    stop_loss_percent: float = 15.0
    take_profit_percent: float = 50.0
    max_daily_trades: int = 10
    risk_level: float = 5.0  # 1-10
    daily_trades_used: int = 0
    total_pnl: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    win_rate: float = 0.0  # percent of closed trades with positive PnL
    last_trade_at: Optional[float] = None
    trade_day: Optional[str] = None  # UTC date the daily counter belongs to
    created_at: float = field(default_factory=time.time)
    open_position_ids: List[int] = field(default_factory=list)  # ids into the position arena

    @property
    def is_running(self) -> bool:
        return self.status == AGENT_RUNNING

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["open_position_ids"] = list(self.open_position_ids)
        return data


@dataclass(frozen=True)
class TechnicalIndicators:
    """Indicator values computed from a token's price history."""

    rsi_14: float = 50.0
    ema_9: float = 0.0
    ema_21: float = 0.0
    ema_50: float = 0.0
    macd_line: float = 0.0
    macd_signal: float = 0.0
    macd_histogram: float = 0.0
    atr_14: float = 0.0
    atr_percent: float = 0.0
    bollinger_upper: float = 0.0
    bollinger_lower: float = 0.0
    bollinger_bandwidth: float = 0.0  # percent of the middle band
    ema_trend_alignment: str = "mixed"  # "bullish" | "bearish" | "mixed"
    ema_crossover: str = "none"  # "golden_cross" | "death_cross" | "none"
    rsi_divergence: str = "none"  # "bullish" | "bearish" | "none"
    price_vs_ema_9: float = 0.0
    price_vs_ema_21: float = 0.0
    price_vs_ema_50: float = 0.0
    is_overextended: bool = False
    is_pullback: bool = False
    trend_strength: float = 50.0
    volume_trend: str = "stable"  # "increasing" | "decreasing" | "stable"


@dataclass(frozen=True)
class TokenSignals:
    """Immutable per-token feature vector for one cycle."""

    key: str  # "<chain>:<address>"
    symbol: str
    chain: str
    address: str
    price: float
    liquidity_usd: float = 0.0
    volume_24h: float = 0.0
    market_cap: float = 0.0
    price_change_1h: float = 0.0
    price_change_24h: float = 0.0
    age_hours: float = 0.0
    momentum_score: float = 50.0
    short_term_momentum: float = 50.0
    momentum_acceleration: float = 0.0
    volume_score: float = 50.0
    volume_breakout: bool = False
    buy_pressure_score: float = 50.0
    liquidity_score: float = 50.0
    liquidity_draining: bool = False
    safety_score: float = 50.0
    rug_risk_score: float = 0.0
    smart_money_score: float = 50.0
    smart_money_flow: str = "neutral"  # "strong_buy" | "buy" | "neutral" | "sell" | "strong_sell"
    whale_activity: str = "neutral"  # "accumulating" | "distributing" | "neutral"
    social_score: float = 50.0
    social_spike: bool = False
    news_score: float = 50.0
    news_sentiment: str = "neutral"  # "bullish" | "bearish" | "neutral"
    fear_greed_score: float = 50.0
    volatility: float = 50.0
    technicals: TechnicalIndicators = field(default_factory=TechnicalIndicators)
    tags: Tuple[str, ...] = ()

    @property
    def scores(self) -> Dict[str, float]:
        """Named signal values (0-100) that feed the conviction sum."""
        return {
            "momentum": self.momentum_score,
            "volume": self.volume_score,
            "buy_pressure": self.buy_pressure_score,
            "liquidity": self.liquidity_score,
            "safety": self.safety_score,
            "smart_money": self.smart_money_score,
            "anti_rug": max(0.0, 100.0 - self.rug_risk_score),
            "short_term_momentum": self.short_term_momentum,
            "trend": self.technicals.trend_strength,
            "social": self.social_score,
            "news": self.news_score,
            "fear_greed": self.fear_greed_score,
        }

    @property
    def quality_score(self) -> float:
        """Liquidity/safety sub-score used to break conviction ties."""
        return (self.liquidity_score + self.safety_score) / 2


@dataclass(frozen=True)
class SignalSnapshot:
    """Immutable per-cycle market snapshot shared by every agent evaluation."""

    cycle_time: float
    regime: str = "neutral"  # "bull" | "bear" | "neutral"
    breadth_score: float = 50.0
    fear_greed_value: int = 50
    fear_greed_classification: str = "Neutral"
    tokens: Mapping[str, TokenSignals] = field(default_factory=lambda: MappingProxyType({}))
    degraded_streams: Tuple[str, ...] = ()

    def get(self, key: str) -> Optional[TokenSignals]:
        return self.tokens.get(key)

    @property
    def context_ref(self) -> str:
        return f"cycle={int(self.cycle_time)} regime={self.regime} fgi={self.fear_greed_value}"


@dataclass(frozen=True)
class Decision:
    """Action chosen by the decision engine for one agent and cycle."""

    action: str  # "buy" | "sell" | "hold" | "close"
    confidence: float
    reasoning: str
    token_key: Optional[str] = None
    token_symbol: Optional[str] = None
    size: float = 0.0  # requested notional for buys
    price: Optional[float] = None  # observed price the decision was made at
    fingerprint: FrozenSet[str] = frozenset()
    stop_loss_percent: Optional[float] = None
    take_profit_percent: Optional[float] = None
    sell_fraction: float = 1.0  # fraction of the position to sell on "sell"
    position_id: Optional[int] = None
    tokens_analyzed: int = 0


@dataclass
class RiskResult:
    """Result of risk validation."""

    approved: bool
    reason: str  # Empty if approved, explanation if denied
    size: float = 0.0  # approved (clamped) size for buys


@dataclass
class ExecutionResult:
    """Result of trade execution."""

    executed: bool
    order_id: Optional[str]
    filled_size: Optional[float]
    fill_price: Optional[float]
    error: Optional[str]


@dataclass
class Position:
    """A single position owned by one agent for one token."""

    id: int
    agent_id: int
    token_key: str
    token_symbol: str
    chain: str
    size: float  # quote-currency notional still held
    avg_entry_price: float
    current_price: float
    side: str = "long"
    highest_price: Optional[float] = None
    stop_loss_price: Optional[float] = None
    take_profit_price: Optional[float] = None
    trailing_stop_price: Optional[float] = None
    unrealized_pnl: float = 0.0
    unrealized_pnl_percent: float = 0.0
    realized_pnl: float = 0.0
    status: str = POSITION_OPENING
    fingerprint: FrozenSet[str] = frozenset()
    take_profit_percent: float = 0.0  # dynamic target the profit tiers scale from
    tiers_completed: int = 0
    opened_at: float = field(default_factory=time.time)
    closed_at: Optional[float] = None
    close_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.status == POSITION_OPEN

    def pnl_percent_at(self, price: float) -> float:
        if self.avg_entry_price <= 0:
            return 0.0
        return (price / self.avg_entry_price - 1) * 100

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["fingerprint"] = sorted(self.fingerprint)
        return data


@dataclass(frozen=True)
class Trade:
    """Immutable execution record."""

    agent_id: int
    token_key: str
    token_symbol: str
    type: str  # "buy" | "sell" | "close" | "failed"
    amount: float
    price: float
    total: float
    pnl: float = 0.0
    reasoning: str = ""
    confidence: float = 0.0
    position_id: Optional[int] = None
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AgentLog:
    """Immutable audit record of one agent's cycle."""

    agent_id: int
    action: str  # decision action, or "skipped" | "error" | "failed_trade" | "rejected"
    reasoning: str
    tokens_analyzed: int = 0
    decision: Optional[str] = None
    confidence: float = 0.0
    market_context: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SignalPerformance:
    """Running outcome aggregates for one signal or signal combination."""

    signal: str
    strategy: str
    wins: int = 0
    losses: int = 0
    total_pnl: float = 0.0
    count: int = 0
    avg_pnl: float = 0.0
    last_updated_at: Optional[float] = None
    recent: Tuple[bool, ...] = ()  # most recent win/loss outcomes, oldest first

    @property
    def win_rate(self) -> float:
        return self.wins / self.count if self.count else 0.0

    @property
    def recent_win_rate(self) -> float:
        return sum(self.recent) / len(self.recent) if self.recent else 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["win_rate"] = round(self.win_rate * 100, 1)
        data["recent"] = list(self.recent)
        return data
