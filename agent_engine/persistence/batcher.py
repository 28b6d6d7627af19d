"""Persistence batcher: collects a cycle's mutations and writes them in one batch."""

import logging
import threading
import time
from typing import Any, Callable, Dict, List

from agent_engine.persistence.mutation_store import Mutation, MutationStore

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 10.0


class PersistenceBatcher:
    """Thread-safe mutation queue with bounded-retry batch flushes.

    In-memory engine state is authoritative; a batch that still fails after
    the last retry is logged and dropped so the next cycle is never blocked.
    """

    def __init__(
        self,
        store: MutationStore,
        batch_size: int = 200,
        max_retries: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the batcher.

        Args:
            store: Destination for flushed batches
            batch_size: Queue length that triggers an early flush
            max_retries: Retries after the first failed write
            backoff_seconds: Initial retry delay, doubled per attempt
            sleep: Sleep function (injectable for tests)
        """
        self.store = store
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

        self._queue: List[Mutation] = []
        self._lock = threading.Lock()
        self._flush_lock = threading.Lock()

        self.flushed_batches = 0
        self.dropped_batches = 0
        self.dropped_mutations = 0

    def enqueue(self, kind: str, payload: Dict[str, Any]) -> None:
        """Queue one mutation; flush early once the queue reaches batch_size."""
        with self._lock:
            self._queue.append(Mutation(kind=kind, payload=payload))
            should_flush = len(self._queue) >= self.batch_size
        if should_flush:
            logger.debug(f"Persistence queue reached {self.batch_size}, flushing early")
            self.flush()

    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    def flush(self) -> bool:
        """
        Write every queued mutation as one batch.

        Returns:
            True if the batch was written (or nothing was queued), False if dropped
        """
        with self._flush_lock:
            with self._lock:
                batch, self._queue = self._queue, []
            if not batch:
                return True

            delay = self.backoff_seconds
            attempts = self.max_retries + 1
            for attempt in range(1, attempts + 1):
                try:
                    self.store.write_batch(batch)
                    self.flushed_batches += 1
                    logger.debug(f"Flushed {len(batch)} mutations")
                    return True
                except Exception as e:
                    if attempt == attempts:
                        logger.error(
                            f"Dropping batch of {len(batch)} mutations after {attempts} attempts: {e}"
                        )
                        self.dropped_batches += 1
                        self.dropped_mutations += len(batch)
                        return False
                    logger.warning(f"Persistence flush failed (attempt {attempt}/{attempts}): {e}")
                    self.sleep(delay)
                    delay = min(delay * 2, MAX_BACKOFF_SECONDS)
            return False

    def stats(self) -> Dict[str, Any]:
        return {
            "pending": self.pending(),
            "flushed_batches": self.flushed_batches,
            "dropped_batches": self.dropped_batches,
            "dropped_mutations": self.dropped_mutations,
        }
