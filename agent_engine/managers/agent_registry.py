"""Registry of trading agents owned by the engine."""

import itertools
import logging
import threading
import time
from typing import Any, Dict, List, Optional

from agent_engine.errors import AgentNotFound, AgentValidationError, InvalidAgentState
from agent_engine.models import AGENT_RUNNING, AGENT_STOPPED, STRATEGIES, Agent

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Thread-safe store of agents; status changes take effect at the next tick."""

    def __init__(self):
        self._agents: Dict[int, Agent] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()

    def create(self, name: str, wallet_address: str, **params: Any) -> Agent:
        """
        Register a new, stopped agent.

        Args:
            name: Display name
            wallet_address: Wallet the execution service trades from
            **params: Optional Agent fields (strategy, chain, risk parameters)

        Returns:
            The new Agent

        Raises:
            AgentValidationError: If a parameter is out of range
        """
        strategy = params.get("strategy", "balanced")
        if strategy not in STRATEGIES:
            raise AgentValidationError(f"strategy must be one of {', '.join(STRATEGIES)}")
        if params.get("max_position_size", 1.0) <= 0:
            raise AgentValidationError("max_position_size must be positive")
        if params.get("max_daily_trades", 10) < 0:
            raise AgentValidationError("max_daily_trades must be non-negative")
        if not 1 <= params.get("risk_level", 5) <= 10:
            raise AgentValidationError("risk_level must be between 1 and 10")
        if not 0 < params.get("stop_loss_percent", 15.0) < 100:
            raise AgentValidationError("stop_loss_percent must be between 0 and 100")
        if params.get("take_profit_percent", 50.0) <= 0:
            raise AgentValidationError("take_profit_percent must be positive")

        with self._lock:
            agent = Agent(id=next(self._ids), name=name, wallet_address=wallet_address,
                          created_at=params.pop("created_at", time.time()), **params)
            agent.status = AGENT_STOPPED
            self._agents[agent.id] = agent
        logger.info(f"Created agent {agent.id} ({agent.name}, {agent.strategy})")
        return agent

    def add(self, agent: Agent) -> Agent:
        """Register an existing agent (e.g. restored from storage)."""
        with self._lock:
            self._agents[agent.id] = agent
            self._ids = itertools.count(max(self._agents) + 1)
        return agent

    def get(self, agent_id: int) -> Agent:
        with self._lock:
            agent = self._agents.get(agent_id)
        if agent is None:
            raise AgentNotFound(f"agent {agent_id} not found")
        return agent

    def list(self, status: Optional[str] = None) -> List[Agent]:
        with self._lock:
            agents = sorted(self._agents.values(), key=lambda a: a.id)
        if status:
            agents = [a for a in agents if a.status == status]
        return agents

    def running_agents(self) -> List[Agent]:
        return self.list(AGENT_RUNNING)

    def start(self, agent_id: int) -> Agent:
        with self._lock:
            agent = self.get(agent_id)
            agent.status = AGENT_RUNNING
        logger.info(f"Agent {agent_id} started")
        return agent

    def stop(self, agent_id: int) -> Agent:
        with self._lock:
            agent = self.get(agent_id)
            agent.status = AGENT_STOPPED
        logger.info(f"Agent {agent_id} stopped (takes effect at the next tick)")
        return agent

    def delete(self, agent_id: int) -> Agent:
        """
        Remove a stopped agent.

        Raises:
            AgentNotFound: If the agent does not exist
            InvalidAgentState: If the agent is still running
        """
        with self._lock:
            agent = self.get(agent_id)
            if agent.is_running:
                raise InvalidAgentState(f"agent {agent_id} is running; stop it before deleting")
            del self._agents[agent_id]
        logger.info(f"Deleted agent {agent_id}")
        return agent

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)

    def __contains__(self, agent_id: int) -> bool:
        with self._lock:
            return agent_id in self._agents
