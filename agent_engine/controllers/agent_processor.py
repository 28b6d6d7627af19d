"""Per-agent unit of work: positions, decision, risk check and execution."""

import logging
import time
from typing import Callable, Optional

from agent_engine.decision_engine import DecisionEngine
from agent_engine.errors import DeadlineExceeded
from agent_engine.managers.activity_journal import ActivityJournal
from agent_engine.managers.position_manager import PositionManager
from agent_engine.memory.agent_memory import AgentMemory
from agent_engine.memory.learning_store import LearningStore
from agent_engine.models import Agent, AgentLog, Decision, Position, SignalSnapshot
from agent_engine.risk_manager import RiskGovernor

logger = logging.getLogger(__name__)


class AgentProcessor:
    """Runs one agent through one cycle against the shared snapshot."""

    def __init__(
        self,
        decision_engine: DecisionEngine,
        risk_governor: RiskGovernor,
        position_manager: PositionManager,
        learning_store: LearningStore,
        memory: AgentMemory,
        journal: ActivityJournal,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize agent processor.

        Args:
            decision_engine: DecisionEngine instance
            risk_governor: RiskGovernor instance
            position_manager: PositionManager instance
            learning_store: LearningStore receiving trade outcomes
            memory: AgentMemory receiving trade outcomes
            journal: ActivityJournal for agent logs
            clock: Monotonic clock the deadline is measured against
        """
        self.decision_engine = decision_engine
        self.risk_governor = risk_governor
        self.position_manager = position_manager
        self.learning_store = learning_store
        self.memory = memory
        self.journal = journal
        self.clock = clock

    def _check_deadline(self, agent: Agent, deadline: Optional[float], step: str) -> None:
        if deadline is not None and self.clock() > deadline:
            raise DeadlineExceeded(f"agent {agent.id} exceeded its deadline before {step}")

    def process_agent(self, agent: Agent, snapshot: SignalSnapshot, deadline: Optional[float] = None) -> Decision:
        """
        Process a single agent: manage open positions, decide, authorize, execute.

        Args:
            agent: Running agent
            snapshot: Shared cycle snapshot
            deadline: Monotonic time after which no trade may be attempted

        Returns:
            The decision taken this cycle

        Raises:
            DeadlineExceeded: If the deadline passed before a trade attempt
            InvariantViolation: If a position invariant would be broken
        """
        now = snapshot.cycle_time

        # Step 1: mark positions to market and run protective exits
        self._check_deadline(agent, deadline, "position updates")
        for position in self.position_manager.update_positions(agent, snapshot):
            self._on_position_closed(agent, position, now)

        # Step 2: decide
        open_positions = self.position_manager.open_positions(agent)
        decision = self.decision_engine.evaluate(agent, snapshot, open_positions)

        # Step 3: risk check
        risk = self.risk_governor.authorize(agent, decision, open_positions, now)
        if not risk.approved:
            self._log(agent, snapshot, decision, action="rejected",
                      reasoning=f"Rejected {decision.action} {decision.token_symbol}: {risk.reason}")
            return decision

        # Step 4: execute
        if decision.action == "hold":
            self._log(agent, snapshot, decision)
            return decision

        self._check_deadline(agent, deadline, f"{decision.action} {decision.token_symbol}")

        if decision.action == "buy":
            position = self.position_manager.open_position(agent, decision, risk.size, now)
            if position is not None:
                self.risk_governor.record_trade_opened(agent, now)
                self._log(agent, snapshot, decision)
            return decision

        position = self.position_manager.get(decision.position_id) if decision.position_id else None
        if position is None or not position.is_open or position.agent_id != agent.id:
            self._log(agent, snapshot, decision, action="rejected",
                      reasoning=f"No open position for {decision.token_symbol}")
            return decision

        if decision.action == "close":
            closed = self.position_manager.close_position(agent, position, decision.price, decision.reasoning, now)
            if closed is not None:
                self._on_position_closed(agent, closed, now)
                self._log(agent, snapshot, decision)
        elif decision.action == "sell":
            before = position.status
            result = self.position_manager.reduce_position(
                agent, position, decision.sell_fraction, decision.price, decision.reasoning, now
            )
            if result is not None:
                if result.status != before and not result.is_open:
                    self._on_position_closed(agent, result, now)
                self._log(agent, snapshot, decision)

        return decision

    def _on_position_closed(self, agent: Agent, position: Position, now: float) -> None:
        """Feed a closed position's outcome back into learning and risk state."""
        pnl_percent = position.pnl_percent_at(position.current_price)
        if position.fingerprint:
            self.learning_store.record_outcome(position.fingerprint, agent.strategy, pnl_percent, now)
        self.memory.record_close(agent_id=agent.id, token_key=position.token_key, pnl_percent=pnl_percent, ts=now)
        self.risk_governor.record_close(agent, position.realized_pnl, now)

    def _log(self, agent: Agent, snapshot: SignalSnapshot, decision: Decision,
             action: Optional[str] = None, reasoning: Optional[str] = None) -> None:
        self.journal.record_log(AgentLog(
            agent_id=agent.id,
            action=action or decision.action,
            reasoning=reasoning or decision.reasoning,
            tokens_analyzed=decision.tokens_analyzed,
            decision=decision.action,
            confidence=decision.confidence,
            market_context=snapshot.context_ref,
            created_at=snapshot.cycle_time,
        ))
