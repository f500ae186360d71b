from unittest.mock import AsyncMock, MagicMock

import pytest

from fusion_rebalancer.chain import ChainClient, address_from_key
from fusion_rebalancer.errors import TransactionSubmissionError

from conftest import TEST_KEY, WETH

PAYLOAD = {"to": WETH.address, "data": "0x095ea7b3", "value": "0", "gasPrice": "1000000"}


def _client(**eth) -> ChainClient:
    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=7)
    w3.eth.estimate_gas = AsyncMock(return_value=60_000)
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"\x12" * 32)
    for name, mock in eth.items():
        setattr(w3.eth, name, mock)
    return ChainClient("http://localhost:8545", TEST_KEY, 8453, w3=w3)


def test_address_matches_key():
    assert _client().address == address_from_key(TEST_KEY)


@pytest.mark.asyncio
async def test_sign_and_send_uses_pending_nonce():
    client = _client()

    tx_hash = await client.sign_and_send(PAYLOAD)

    assert tx_hash == "0x" + "12" * 32
    client.w3.eth.get_transaction_count.assert_awaited_once_with(client.address, "pending")
    sent_tx = client.w3.eth.estimate_gas.await_args.args[0]
    assert sent_tx["nonce"] == 7
    assert sent_tx["gasPrice"] == 1_000_000
    assert sent_tx["chainId"] == 8453
    client.w3.eth.send_raw_transaction.assert_awaited_once()


@pytest.mark.asyncio
async def test_broadcast_failure_carries_payload_and_nonce():
    client = _client(send_raw_transaction=AsyncMock(side_effect=ValueError("replacement underpriced")))

    with pytest.raises(TransactionSubmissionError) as exc:
        await client.sign_and_send(PAYLOAD)

    assert exc.value.nonce == 7
    assert exc.value.payload == PAYLOAD
    assert "replacement underpriced" in str(exc.value)


@pytest.mark.asyncio
async def test_nonce_failure_reports_missing_nonce():
    client = _client(get_transaction_count=AsyncMock(side_effect=ConnectionError("rpc down")))

    with pytest.raises(TransactionSubmissionError) as exc:
        await client.sign_and_send(PAYLOAD)

    assert exc.value.nonce is None


@pytest.mark.asyncio
async def test_close_disconnects_provider():
    client = _client()
    client.w3.provider.disconnect = AsyncMock()

    await client.close()

    client.w3.provider.disconnect.assert_awaited_once()
