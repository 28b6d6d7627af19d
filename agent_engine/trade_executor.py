"""Trade execution layer: the boundary to the swap/broadcast service."""

import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests

from agent_engine.config import Config
from agent_engine.errors import ExecutionFailed
from agent_engine.models import Agent, ExecutionResult


logger = logging.getLogger(__name__)


def failed_result(error: str) -> ExecutionResult:
    return ExecutionResult(executed=False, order_id=None, filled_size=None, fill_price=None, error=error)


class SwapClient(ABC):
    """Executes a swap for an agent; chain-specific details live behind this interface."""

    @abstractmethod
    def execute_trade(self, agent: Agent, token_key: str, side: str, size: float, price: float) -> ExecutionResult:
        """
        Execute one swap.

        Args:
            agent: Agent the trade is for (wallet, chain)
            token_key: Token key ("<chain>:<address>")
            side: "buy" or "sell"
            size: Quote-currency notional
            price: Observed price the decision was made at

        Returns:
            ExecutionResult; raise ExecutionFailed on a failed swap
        """


class PaperSwapClient(SwapClient):
    """Simulated fills at the observed price with a fixed slippage."""

    def __init__(self, slippage_bps: float = 30.0):
        self.slippage = slippage_bps / 10_000
        self._order_ids = itertools.count(1)

    def execute_trade(self, agent: Agent, token_key: str, side: str, size: float, price: float) -> ExecutionResult:
        if price <= 0:
            raise ExecutionFailed(f"no valid price for {token_key}")
        fill_price = price * (1 + self.slippage) if side == "buy" else price * (1 - self.slippage)
        return ExecutionResult(
            executed=True,
            order_id=f"paper-{next(self._order_ids)}",
            filled_size=size,
            fill_price=fill_price,
            error=None,
        )


class HttpSwapClient(SwapClient):
    """Posts trades to an external execution service."""

    def __init__(self, base_url: str, timeout: float = 15.0, session: Optional[requests.Session] = None):
        """
        Initialize the execution service client.

        Args:
            base_url: Base URL of the execution service
            timeout: Request timeout in seconds
            session: Optional shared HTTP session
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})

    def execute_trade(self, agent: Agent, token_key: str, side: str, size: float, price: float) -> ExecutionResult:
        chain, _, address = token_key.partition(":")
        payload: Dict[str, Any] = {
            "agentId": agent.id,
            "walletAddress": agent.wallet_address,
            "chain": chain,
            "tokenAddress": address,
            "side": side,
            "amount": size,
            "expectedPrice": price,
        }
        try:
            response = self.session.post(f"{self.base_url}/trades", json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            raise ExecutionFailed(f"execution service request failed: {e}") from e

        if not body.get("success"):
            raise ExecutionFailed(body.get("error") or "execution service rejected the trade")

        return ExecutionResult(
            executed=True,
            order_id=body.get("txHash") or body.get("orderId"),
            filled_size=float(body.get("amount") or size),
            fill_price=float(body.get("fillPrice") or price),
            error=None,
        )


class TradeExecutor:
    """Validates and routes trades to the configured swap client."""

    def __init__(self, config: Config, client: Optional[SwapClient] = None):
        """
        Initialize the trade executor.

        Args:
            config: Configuration object (run mode, execution service URL)
            client: Explicit swap client, overrides the run-mode default
        """
        self.config = config
        if client is not None:
            self.client = client
        elif config.is_live:
            self.client = HttpSwapClient(config.execution_service_url)
        else:
            self.client = PaperSwapClient(config.paper_slippage_bps)

    def execute(self, agent: Agent, token_key: str, side: str, size: float, price: float) -> ExecutionResult:
        """
        Execute a trade, converting every failure into an ExecutionResult.

        Args:
            agent: Agent the trade is for
            token_key: Token key
            side: "buy" or "sell"
            size: Quote-currency notional
            price: Observed price

        Returns:
            ExecutionResult with execution details or error
        """
        if side not in ("buy", "sell"):
            logger.error(f"Unknown side: {side}")
            return failed_result(f"Unknown side: {side}")

        if size <= 0:
            logger.warning(f"Order size is {size}, skipping execution")
            return failed_result("Order size is zero or negative")

        try:
            result = self.client.execute_trade(agent, token_key, side, size, price)
        except ExecutionFailed as e:
            logger.error(f"Execution failed for agent {agent.id} {side} {token_key}: {e}")
            return failed_result(str(e))
        except Exception as e:
            logger.error(f"Execution error for agent {agent.id} {side} {token_key}: {e}")
            return failed_result(str(e))

        if result.executed and (result.fill_price is None or result.fill_price <= 0):
            return failed_result("Execution returned no fill price")

        logger.info(
            f"Agent {agent.id} {side.upper()} {token_key}: size={result.filled_size} "
            f"fill={result.fill_price} order={result.order_id}"
        )
        return result
