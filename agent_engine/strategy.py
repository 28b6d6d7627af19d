"""Strategy variants for the agent execution engine.

Every agent runs the same evaluation algorithm; the four strategy variants only
differ in the immutable StrategyConfig selected by name.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Mapping, Tuple

logger = logging.getLogger(__name__)


SIGNAL_NAMES = (
    "momentum",
    "volume",
    "buy_pressure",
    "liquidity",
    "safety",
    "smart_money",
    "anti_rug",
    "short_term_momentum",
    "trend",
    "social",
    "news",
    "fear_greed",
)

# Per-regime signal weights (each row sums to 1.0)
REGIME_WEIGHTS: Dict[str, Dict[str, float]] = {
    "bull": {
        "momentum": 0.16, "volume": 0.11, "buy_pressure": 0.09, "liquidity": 0.05,
        "safety": 0.05, "smart_money": 0.11, "anti_rug": 0.04, "short_term_momentum": 0.05,
        "trend": 0.11, "social": 0.09, "news": 0.08, "fear_greed": 0.06,
    },
    "bear": {
        "momentum": 0.10, "volume": 0.08, "buy_pressure": 0.11, "liquidity": 0.09,
        "safety": 0.10, "smart_money": 0.09, "anti_rug": 0.08, "short_term_momentum": 0.04,
        "trend": 0.08, "social": 0.06, "news": 0.08, "fear_greed": 0.09,
    },
    "neutral": {
        "momentum": 0.15, "volume": 0.10, "buy_pressure": 0.10, "liquidity": 0.07,
        "safety": 0.07, "smart_money": 0.10, "anti_rug": 0.05, "short_term_momentum": 0.04,
        "trend": 0.10, "social": 0.08, "news": 0.07, "fear_greed": 0.07,
    },
}


@dataclass(frozen=True)
class ProfitTier:
    """Partial profit-take step: sell a share once PnL reaches a fraction of the target."""

    threshold: float  # fraction of the dynamic take-profit percent
    sell_percent: float  # percent of the remaining position to sell


@dataclass(frozen=True)
class StrategyConfig:
    """Immutable parameters that distinguish one strategy variant from another."""

    name: str
    conviction_floor: float
    momentum_floor: float
    size_multiplier: float
    sizing_tiers: Tuple[Tuple[float, float], ...]  # (min conviction, fraction of max size)
    high_volatility_size_factor: float
    max_open_positions: int
    cooldown_loss_threshold: int  # consecutive losing closes that start a cooldown
    cooldown_cycles: int
    trailing_stop_pct: float
    stop_loss_base: float
    take_profit_base: float
    breakeven_threshold: float
    max_hold_hours: float
    min_safety_score: float
    min_liquidity_score: float
    max_rug_risk: float
    max_rsi: float
    profit_tiers: Tuple[ProfitTier, ...]
    signal_tilt: Mapping[str, float]
    trailing_arm_pct: float = 3.0
    materiality_score: float = 65.0  # signal value that counts towards the fingerprint

    def baseline_weight(self, signal: str, regime: str = "neutral") -> float:
        """Default weight for a signal before any outcome history exists."""
        return baseline_weights(self.name, regime).get(signal, 0.0)


def _tilted(tilt: Dict[str, float]) -> Mapping[str, float]:
    return MappingProxyType({name: tilt.get(name, 1.0) for name in SIGNAL_NAMES})


STRATEGY_CONFIGS: Dict[str, StrategyConfig] = {
    "conservative": StrategyConfig(
        name="conservative",
        conviction_floor=64.0,
        momentum_floor=55.0,
        size_multiplier=0.6,
        sizing_tiers=((85.0, 1.0), (75.0, 0.85), (65.0, 0.7), (0.0, 0.5)),
        high_volatility_size_factor=0.7,
        max_open_positions=3,
        cooldown_loss_threshold=2,
        cooldown_cycles=3,
        trailing_stop_pct=8.0,
        stop_loss_base=8.0,
        take_profit_base=18.0,
        breakeven_threshold=5.0,
        max_hold_hours=48.0,
        min_safety_score=65.0,
        min_liquidity_score=55.0,
        max_rug_risk=30.0,
        max_rsi=68.0,
        profit_tiers=(
            ProfitTier(0.30, 30), ProfitTier(0.55, 25), ProfitTier(0.80, 25), ProfitTier(1.00, 20),
        ),
        signal_tilt=_tilted({
            "safety": 1.4, "liquidity": 1.4, "anti_rug": 1.4,
            "momentum": 0.8, "short_term_momentum": 0.8, "social": 0.8,
        }),
    ),
    "balanced": StrategyConfig(
        name="balanced",
        conviction_floor=58.0,
        momentum_floor=50.0,
        size_multiplier=0.8,
        sizing_tiers=((80.0, 1.0), (65.0, 0.85), (50.0, 0.7), (0.0, 0.55)),
        high_volatility_size_factor=0.75,
        max_open_positions=5,
        cooldown_loss_threshold=2,
        cooldown_cycles=3,
        trailing_stop_pct=12.0,
        stop_loss_base=12.0,
        take_profit_base=30.0,
        breakeven_threshold=8.0,
        max_hold_hours=36.0,
        min_safety_score=45.0,
        min_liquidity_score=40.0,
        max_rug_risk=45.0,
        max_rsi=75.0,
        profit_tiers=(
            ProfitTier(0.25, 25), ProfitTier(0.50, 25), ProfitTier(0.75, 25), ProfitTier(1.00, 25),
        ),
        signal_tilt=_tilted({}),
    ),
    "aggressive": StrategyConfig(
        name="aggressive",
        conviction_floor=54.0,
        momentum_floor=45.0,
        size_multiplier=1.0,
        sizing_tiers=((75.0, 1.0), (60.0, 0.9), (45.0, 0.75), (0.0, 0.6)),
        high_volatility_size_factor=0.8,
        max_open_positions=8,
        cooldown_loss_threshold=3,
        cooldown_cycles=2,
        trailing_stop_pct=15.0,
        stop_loss_base=18.0,
        take_profit_base=50.0,
        breakeven_threshold=12.0,
        max_hold_hours=18.0,
        min_safety_score=30.0,
        min_liquidity_score=25.0,
        max_rug_risk=55.0,
        max_rsi=78.0,
        profit_tiers=(
            ProfitTier(0.20, 20), ProfitTier(0.45, 25), ProfitTier(0.70, 25), ProfitTier(1.00, 30),
        ),
        signal_tilt=_tilted({"momentum": 1.2, "volume": 1.2, "social": 1.1}),
    ),
    "degen": StrategyConfig(
        name="degen",
        conviction_floor=50.0,
        momentum_floor=40.0,
        size_multiplier=1.0,
        sizing_tiers=((70.0, 1.0), (50.0, 0.9), (35.0, 0.8), (0.0, 0.65)),
        high_volatility_size_factor=0.85,
        max_open_positions=10,
        cooldown_loss_threshold=4,
        cooldown_cycles=3,
        trailing_stop_pct=20.0,
        stop_loss_base=25.0,
        take_profit_base=80.0,
        breakeven_threshold=18.0,
        max_hold_hours=10.0,
        min_safety_score=0.0,
        min_liquidity_score=0.0,
        max_rug_risk=65.0,
        max_rsi=85.0,
        profit_tiers=(
            ProfitTier(0.15, 15), ProfitTier(0.35, 20), ProfitTier(0.60, 25), ProfitTier(1.00, 40),
        ),
        signal_tilt=_tilted({
            "momentum": 1.4, "short_term_momentum": 1.4, "social": 1.3, "volume": 1.2,
            "safety": 0.7, "liquidity": 0.7, "anti_rug": 0.8,
        }),
    ),
}


_BASELINE_CACHE: Dict[Tuple[str, str], Mapping[str, float]] = {}


def get_strategy_config(strategy: str) -> StrategyConfig:
    """Return the config for a strategy name, falling back to balanced."""
    config = STRATEGY_CONFIGS.get(strategy)
    if config is None:
        logger.warning(f"Unknown strategy '{strategy}', using balanced")
        return STRATEGY_CONFIGS["balanced"]
    return config


def baseline_weights(strategy: str, regime: str = "neutral") -> Mapping[str, float]:
    """
    Normalised baseline weights for a strategy under a market regime.

    Args:
        strategy: Strategy variant name
        regime: "bull" | "bear" | "neutral"

    Returns:
        Mapping of signal name to weight, summing to 1.0
    """
    key = (strategy, regime)
    cached = _BASELINE_CACHE.get(key)
    if cached is not None:
        return cached

    config = STRATEGY_CONFIGS.get(strategy, STRATEGY_CONFIGS["balanced"])
    regime_weights = REGIME_WEIGHTS.get(regime, REGIME_WEIGHTS["neutral"])
    raw = {name: regime_weights[name] * config.signal_tilt[name] for name in SIGNAL_NAMES}
    total = sum(raw.values())
    weights = MappingProxyType({name: value / total for name, value in raw.items()})
    _BASELINE_CACHE[key] = weights
    return weights


def regime_factor(signal: str, regime: str) -> float:
    """Ratio of a signal's regime weight to its neutral weight."""
    neutral = REGIME_WEIGHTS["neutral"][signal]
    return REGIME_WEIGHTS.get(regime, REGIME_WEIGHTS["neutral"])[signal] / neutral
