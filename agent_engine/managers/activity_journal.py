"""In-memory trade and log history, mirrored to the persistence batcher."""

import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from agent_engine.models import AgentLog, Position, Trade
from agent_engine.persistence.batcher import PersistenceBatcher

logger = logging.getLogger(__name__)


class ActivityJournal:
    """Records trades, agent logs and position deltas for one engine."""

    def __init__(self, batcher: Optional[PersistenceBatcher] = None, max_entries: int = 1000):
        """
        Initialize the journal.

        Args:
            batcher: Persistence batcher receiving every record (optional)
            max_entries: Records kept in memory per agent and kind
        """
        self.batcher = batcher
        self.max_entries = max_entries
        self._trades: Dict[int, Deque[Trade]] = {}
        self._logs: Dict[int, Deque[AgentLog]] = {}
        self._lock = threading.RLock()

    def record_trade(self, trade: Trade) -> None:
        with self._lock:
            self._trades.setdefault(trade.agent_id, deque(maxlen=self.max_entries)).append(trade)
        if self.batcher is not None:
            self.batcher.enqueue("trade", trade.to_dict())

    def record_log(self, log: AgentLog) -> None:
        with self._lock:
            self._logs.setdefault(log.agent_id, deque(maxlen=self.max_entries)).append(log)
        if self.batcher is not None:
            self.batcher.enqueue("agent_log", log.to_dict())
        logger.debug(f"Agent {log.agent_id} [{log.action}] {log.reasoning}")

    def record_position(self, position: Position) -> None:
        if self.batcher is not None:
            self.batcher.enqueue("position", position.to_dict())

    def trades(self, agent_id: int, limit: Optional[int] = None) -> List[Trade]:
        """Most recent trades first."""
        with self._lock:
            items = list(self._trades.get(agent_id, ()))
        items.reverse()
        return items[:limit] if limit else items

    def logs(self, agent_id: int, limit: Optional[int] = None) -> List[AgentLog]:
        """Most recent logs first."""
        with self._lock:
            items = list(self._logs.get(agent_id, ()))
        items.reverse()
        return items[:limit] if limit else items

    def forget(self, agent_id: int) -> None:
        with self._lock:
            self._trades.pop(agent_id, None)
            self._logs.pop(agent_id, None)
