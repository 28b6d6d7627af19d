"""Durable storage backends for engine mutations."""

import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Sequence

from agent_engine.errors import PersistenceError

logger = logging.getLogger(__name__)

MUTATION_KINDS = ("trade", "agent_log", "position", "signal_performance", "agent")

# Keys whose values are never written to disk
SENSITIVE_KEYS = ("api_key", "api_secret", "secret", "password", "private_key", "auth_token", "credential")


@dataclass(frozen=True)
class Mutation:
    """One pending write: a record of a given kind."""

    kind: str  # one of MUTATION_KINDS
    payload: Dict[str, Any] = field(default_factory=dict)


class MutationStore(ABC):
    """Destination for flushed mutation batches."""

    @abstractmethod
    def write_batch(self, mutations: Sequence[Mutation]) -> None:
        """Write every mutation or raise PersistenceError."""


class JsonlMutationStore(MutationStore):
    """Appends mutations to one JSON-lines file per kind."""

    def __init__(self, directory: str):
        """
        Initialize the store.

        Args:
            directory: Directory holding <kind>.jsonl files (created if missing)
        """
        self.directory = directory
        self._lock = threading.Lock()
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)

    def _path(self, kind: str) -> str:
        return os.path.join(self.directory, f"{kind}.jsonl")

    def write_batch(self, mutations: Sequence[Mutation]) -> None:
        """
        Append a batch, one JSON object per line, grouped by kind.

        Flushes after each file for durability.
        """
        grouped: Dict[str, List[Dict[str, Any]]] = {}
        for mutation in mutations:
            grouped.setdefault(mutation.kind, []).append(self._sanitize(mutation.payload))

        with self._lock:
            try:
                for kind, records in grouped.items():
                    with open(self._path(kind), "a", encoding="utf-8") as f:
                        for record in records:
                            json.dump(record, f, default=str)
                            f.write("\n")
                        f.flush()
            except (OSError, TypeError, ValueError) as e:
                raise PersistenceError(f"failed to write {len(mutations)} mutations: {e}") from e

    def read(self, kind: str) -> Iterator[Dict[str, Any]]:
        """Yield every stored record of a kind, oldest first; malformed lines are skipped."""
        path = self._path(kind)
        if not os.path.exists(path):
            return
        with open(path, "r", encoding="utf-8") as f:
            for line_number, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    yield json.loads(line)
                except ValueError:
                    logger.warning(f"Skipping malformed line {line_number} in {path}")

    def _sanitize(self, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Redact sensitive values from a record.

        Args:
            record: Mutation payload

        Returns:
            Copy of the payload with sensitive keys redacted
        """
        sanitized = {}
        for key, value in record.items():
            lower_key = key.lower()
            if any(pattern in lower_key for pattern in SENSITIVE_KEYS):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = self._sanitize(value)
            else:
                sanitized[key] = value
        return sanitized
