"""Risk governor for the agent execution engine."""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional, Sequence

from agent_engine.config import Config
from agent_engine.models import Agent, Decision, Position, RiskResult
from agent_engine.strategy import get_strategy_config


logger = logging.getLogger(__name__)

DAILY_LIMIT_REASON = "daily trade limit reached"


def utc_day(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).date().isoformat()


@dataclass
class CooldownState:
    """Consecutive-loss tracking for one agent."""

    consecutive_losses: int = 0
    until: Optional[float] = None


class RiskGovernor:
    """Validates and clamps agent decisions against per-agent limits."""

    def __init__(self, config: Config, clock: Callable[[], float] = time.time):
        """
        Initialize risk governor with configuration.

        Args:
            config: Configuration object with risk parameters
            clock: Time source used when callers do not pass a timestamp
        """
        self.loop_interval_seconds = config.loop_interval_seconds
        self.cooldown_conviction_boost = config.cooldown_conviction_boost
        self.cooldown_size_factor = config.cooldown_size_factor
        self.clock = clock

        self._lock = threading.RLock()
        self._cooldowns: Dict[int, CooldownState] = {}

    # ------------------------------------------------------------------
    # Daily counters
    # ------------------------------------------------------------------

    def roll_day(self, agent: Agent, now: Optional[float] = None) -> bool:
        """
        Reset the agent's daily trade counter when the UTC day has changed.

        Returns:
            True if the counter was reset
        """
        day = utc_day(self.clock() if now is None else now)
        with self._lock:
            if agent.trade_day == day:
                return False
            if agent.trade_day is not None:
                logger.info(f"Agent {agent.id}: new UTC day {day}, resetting daily trades ({agent.daily_trades_used})")
            agent.trade_day = day
            agent.daily_trades_used = 0
            return True

    def roll_all(self, agents: Iterable[Agent], now: Optional[float] = None) -> None:
        for agent in agents:
            self.roll_day(agent, now)

    def record_trade_opened(self, agent: Agent, now: Optional[float] = None) -> None:
        """Count a successfully opened position against the daily limit."""
        with self._lock:
            self.roll_day(agent, now)
            agent.daily_trades_used += 1

    # ------------------------------------------------------------------
    # Cooldown
    # ------------------------------------------------------------------

    def record_close(self, agent: Agent, pnl: float, now: Optional[float] = None) -> None:
        """
        Track a closed trade outcome and start a cooldown after a losing run.

        Args:
            agent: Agent whose position closed
            pnl: Realized PnL of the close
            now: Close time (epoch seconds)
        """
        now = self.clock() if now is None else now
        config = get_strategy_config(agent.strategy)
        with self._lock:
            state = self._cooldowns.setdefault(agent.id, CooldownState())
            if pnl > 0:
                state.consecutive_losses = 0
                return

            state.consecutive_losses += 1
            if state.consecutive_losses >= config.cooldown_loss_threshold:
                duration = config.cooldown_cycles * self.loop_interval_seconds
                state.until = now + duration
                logger.warning(
                    f"Agent {agent.id}: {state.consecutive_losses} consecutive losses, "
                    f"cooldown for {duration}s"
                )
                state.consecutive_losses = 0

    def in_cooldown(self, agent_id: int, now: Optional[float] = None) -> bool:
        now = self.clock() if now is None else now
        with self._lock:
            state = self._cooldowns.get(agent_id)
            return bool(state and state.until is not None and now < state.until)

    def cooldown_status(self, agent_id: int, now: Optional[float] = None) -> Dict[str, Any]:
        now = self.clock() if now is None else now
        with self._lock:
            state = self._cooldowns.get(agent_id) or CooldownState()
            active = state.until is not None and now < state.until
            return {
                "active": active,
                "remaining_seconds": round(state.until - now, 1) if active else 0.0,
                "consecutive_losses": state.consecutive_losses,
            }

    def forget(self, agent_id: int) -> None:
        with self._lock:
            self._cooldowns.pop(agent_id, None)

    # ------------------------------------------------------------------
    # Authorization
    # ------------------------------------------------------------------

    def authorize(
        self,
        agent: Agent,
        decision: Decision,
        open_positions: Sequence[Position] = (),
        now: Optional[float] = None,
    ) -> RiskResult:
        """
        Run all risk checks and return approval or rejection.

        Args:
            agent: Agent proposing the decision
            decision: Decision from the decision engine
            open_positions: The agent's currently open positions
            now: Decision time (epoch seconds)

        Returns:
            RiskResult with the approved (possibly reduced) size
        """
        now = self.clock() if now is None else now

        # Exits and holds are never blocked
        if decision.action != "buy":
            return RiskResult(approved=True, reason="", size=decision.size)

        config = get_strategy_config(agent.strategy)

        with self._lock:
            self.roll_day(agent, now)
            if agent.daily_trades_used >= agent.max_daily_trades:
                logger.info(f"Risk check: agent {agent.id} denied - {DAILY_LIMIT_REASON}")
                return RiskResult(approved=False, reason=DAILY_LIMIT_REASON)

        if decision.size <= 0:
            return RiskResult(approved=False, reason="non-positive position size")

        if decision.size > agent.max_position_size:
            reason = f"size {decision.size:.4f} exceeds max position size {agent.max_position_size:.4f}"
            logger.info(f"Risk check: agent {agent.id} denied - {reason}")
            return RiskResult(approved=False, reason=reason)

        if len(open_positions) >= config.max_open_positions:
            return RiskResult(
                approved=False,
                reason=f"max open positions reached ({len(open_positions)}/{config.max_open_positions})",
            )

        if any(p.token_key == decision.token_key for p in open_positions):
            return RiskResult(approved=False, reason=f"position already open for {decision.token_symbol}")

        size = decision.size
        if self.in_cooldown(agent.id, now):
            required = config.conviction_floor + self.cooldown_conviction_boost
            if decision.confidence < required:
                reason = f"cooldown active: confidence {decision.confidence:.1f} below {required:.1f}"
                logger.info(f"Risk check: agent {agent.id} denied - {reason}")
                return RiskResult(approved=False, reason=reason)
            size *= self.cooldown_size_factor

        exposure = sum(p.size for p in open_positions)
        remaining_budget = agent.max_position_size * config.max_open_positions - exposure
        if remaining_budget <= 0:
            return RiskResult(approved=False, reason="position budget exhausted")

        size = round(min(size, remaining_budget), 8)
        logger.info(f"Risk check: agent {agent.id} buy {decision.token_symbol} approved, size {size:.4f}")
        return RiskResult(approved=True, reason="", size=size)
