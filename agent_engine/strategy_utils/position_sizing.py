"""Position sizing and protective-price calculations."""

import logging

from agent_engine.strategy import StrategyConfig

logger = logging.getLogger(__name__)


def conviction_size_fraction(config: StrategyConfig, conviction: float, volatility: float) -> float:
    """
    Fraction of the agent's max position size to commit at a given conviction.

    Args:
        config: Strategy parameters
        conviction: Conviction score (0-100)
        volatility: Volatility score (0-100)

    Returns:
        Fraction between 0 and 1
    """
    fraction = config.sizing_tiers[-1][1]
    for min_conviction, tier_fraction in config.sizing_tiers:
        if conviction >= min_conviction:
            fraction = tier_fraction
            break

    if volatility >= 85:
        fraction *= config.high_volatility_size_factor

    return fraction


def risk_level_factor(risk_level: float) -> float:
    """Scale 1-10 risk level to a size factor (1 -> 0.55, 5 -> 0.75, 10 -> 1.0)."""
    level = max(1.0, min(10.0, risk_level))
    return 0.5 + level * 0.05


def dynamic_stop_loss_percent(config: StrategyConfig, volatility: float) -> float:
    """Stop-loss distance in percent, widened for volatile tokens."""
    if volatility >= 85:
        multiplier = 1.6
    elif volatility >= 70:
        multiplier = 1.35
    elif volatility >= 55:
        multiplier = 1.15
    elif volatility >= 40:
        multiplier = 1.0
    else:
        multiplier = 0.85
    return round(config.stop_loss_base * multiplier, 1)


def dynamic_take_profit_percent(config: StrategyConfig, volatility: float, regime: str) -> float:
    """Take-profit distance in percent, scaled by volatility and market regime."""
    if volatility >= 85:
        multiplier = 1.5
    elif volatility >= 70:
        multiplier = 1.3
    elif volatility >= 55:
        multiplier = 1.1
    else:
        multiplier = 0.9

    if regime == "bull":
        multiplier *= 1.3
    elif regime == "bear":
        multiplier *= 0.7

    return round(config.take_profit_base * multiplier, 1)
