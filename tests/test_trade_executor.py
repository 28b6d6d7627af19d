import pytest
import requests

from conftest import RecordingSwapClient

from agent_engine.config import Config
from agent_engine.trade_executor import HttpSwapClient, PaperSwapClient, TradeExecutor


class FakeResponse:
    def __init__(self, body, status=200):
        self.body = body
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.exceptions.HTTPError(f"{self.status} error")

    def json(self):
        return self.body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.headers = {}
        self.posts = []

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        if self.error:
            raise self.error
        return self.response


def test_paper_fills_with_slippage(agent):
    client = PaperSwapClient(slippage_bps=100)

    buy = client.execute_trade(agent, "solana:AAA", "buy", 1.0, 2.0)
    sell = client.execute_trade(agent, "solana:AAA", "sell", 1.0, 2.0)

    assert buy.fill_price == pytest.approx(2.02)
    assert sell.fill_price == pytest.approx(1.98)
    assert buy.order_id != sell.order_id


def test_executor_picks_client_by_run_mode():
    assert isinstance(TradeExecutor(Config()).client, PaperSwapClient)
    live = Config(run_mode="live", execution_service_url="http://executor")
    assert isinstance(TradeExecutor(live).client, HttpSwapClient)


def test_executor_rejects_bad_orders(config, agent):
    swap = RecordingSwapClient()
    executor = TradeExecutor(config, client=swap)

    assert executor.execute(agent, "solana:AAA", "short", 1.0, 1.0).error == "Unknown side: short"
    assert not executor.execute(agent, "solana:AAA", "buy", 0.0, 1.0).executed
    assert swap.calls == []


def test_executor_converts_failures_to_results(config, agent):
    result = TradeExecutor(config, client=RecordingSwapClient(fail=True)).execute(agent, "solana:AAA", "buy", 1.0, 1.0)

    assert not result.executed
    assert result.error == "swap rejected"

    paper = TradeExecutor(config, client=PaperSwapClient(0)).execute(agent, "solana:AAA", "buy", 1.0, 0.0)
    assert not paper.executed


def test_http_client_posts_trade(agent):
    session = FakeSession(FakeResponse({"success": True, "txHash": "0xabc", "amount": 0.5, "fillPrice": 1.01}))
    client = HttpSwapClient("http://executor/", session=session)

    result = client.execute_trade(agent, "solana:AAA", "buy", 0.5, 1.0)

    assert result.executed
    assert result.order_id == "0xabc"
    assert result.fill_price == 1.01
    url, payload = session.posts[0]
    assert url == "http://executor/trades"
    assert payload["tokenAddress"] == "AAA"
    assert payload["chain"] == "solana"
    assert payload["walletAddress"] == "wallet-1"


@pytest.mark.parametrize("session", [
    FakeSession(error=requests.exceptions.ConnectionError("refused")),
    FakeSession(FakeResponse({}, status=502)),
    FakeSession(FakeResponse({"success": False, "error": "insufficient balance"})),
])
def test_http_failures_become_failed_results(config, agent, session):
    executor = TradeExecutor(config, client=HttpSwapClient("http://executor", session=session))

    result = executor.execute(agent, "solana:AAA", "sell", 0.5, 1.0)

    assert not result.executed
    assert result.error
