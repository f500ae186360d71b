from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from fusion_rebalancer.allowance import AllowanceManager
from fusion_rebalancer.errors import TransactionSubmissionError
from fusion_rebalancer.oneinch import OneInchClient

from conftest import WALLET, WETH

ROUTER = "0x111111125421cA6dc452d289314280a0f8842A65"


def _manager(allowance: str, chain=None, sleeps=None):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.path.endswith("/approve/allowance"):
            return httpx.Response(200, json={"allowance": allowance})
        if request.url.path.endswith("/approve/transaction"):
            return httpx.Response(
                200,
                json={"to": WETH.address, "data": "0x095ea7b3", "value": "0", "gasPrice": "1000000"},
            )
        return httpx.Response(404)

    api = OneInchClient(
        "https://api.1inch.com", "token", 8453,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    if chain is None:
        chain = MagicMock()
        chain.address = WALLET
        chain.sign_and_send = AsyncMock(return_value="0xapprove")

    async def sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    return AllowanceManager(api, chain, confirmation_delay=10, sleep=sleep), chain, calls


@pytest.mark.asyncio
async def test_sufficient_allowance_sends_nothing():
    manager, chain, calls = _manager(allowance="1000")

    assert await manager.ensure_allowance(WETH, 1000) is None
    chain.sign_and_send.assert_not_awaited()
    assert [c.url.path for c in calls] == ["/swap/v6.1/8453/approve/allowance"]
    assert calls[0].url.params["walletAddress"] == WALLET
    assert calls[0].url.params["tokenAddress"] == WETH.address


@pytest.mark.asyncio
async def test_short_allowance_approves_then_waits():
    sleeps = []
    manager, chain, calls = _manager(allowance="999", sleeps=sleeps)

    tx_hash = await manager.ensure_allowance(WETH, 1000)

    assert tx_hash == "0xapprove"
    assert calls[1].url.path == "/swap/v6.1/8453/approve/transaction"
    assert calls[1].url.params["amount"] == "1000"
    chain.sign_and_send.assert_awaited_once_with(
        {"to": WETH.address, "data": "0x095ea7b3", "value": "0", "gasPrice": "1000000"}
    )
    assert sleeps == [10]


@pytest.mark.asyncio
async def test_approval_failure_is_not_retried():
    chain = MagicMock()
    chain.address = WALLET
    payload = {"to": WETH.address, "data": "0x095ea7b3"}
    chain.sign_and_send = AsyncMock(
        side_effect=TransactionSubmissionError(payload, 12, RuntimeError("nonce too low"))
    )
    sleeps = []
    manager, _, _ = _manager(allowance="0", chain=chain, sleeps=sleeps)

    with pytest.raises(TransactionSubmissionError) as exc:
        await manager.ensure_allowance(WETH, 5)

    assert exc.value.nonce == 12
    assert chain.sign_and_send.await_count == 1
    assert sleeps == []
