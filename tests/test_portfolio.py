from decimal import Decimal

import httpx
import pytest

from fusion_rebalancer.errors import OneInchAPIError
from fusion_rebalancer.oneinch import OneInchClient
from fusion_rebalancer.portfolio import PortfolioReader

from conftest import USDC, WALLET, WETH


def _reader(handler) -> PortfolioReader:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PortfolioReader(OneInchClient("https://api.1inch.com", "token", 8453, http_client=client))


def _snapshot_handler(positions, status=200):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, json={"result": positions})

    return handler, seen


@pytest.mark.asyncio
async def test_balances_match_contract_address_case_insensitively(pair):
    handler, seen = _snapshot_handler(
        [
            {"contract_address": WETH.address.lower(), "value_usd": 600.5},
            {"contract_address": USDC.address.upper().replace("0X", "0x"), "value_usd": "399.5"},
            {"contract_address": "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee", "value_usd": 1.17},
        ]
    )
    weth, usdc = await _reader(handler).get_balances(WALLET, pair)

    assert weth.token == WETH and weth.value_usd == Decimal("600.5")
    assert usdc.token == USDC and usdc.value_usd == Decimal("399.5")

    request = seen[0]
    assert request.url.path == "/portfolio/portfolio/v5.0/tokens/snapshot"
    assert request.url.params["addresses"] == WALLET
    assert request.url.params["chain_id"] == "8453"
    assert request.headers["Authorization"] == "Bearer token"


@pytest.mark.asyncio
async def test_absent_token_counts_as_zero(pair):
    handler, _ = _snapshot_handler([{"contract_address": WETH.address, "value_usd": 42}])
    weth, usdc = await _reader(handler).get_balances(WALLET, pair)

    assert weth.value_usd == Decimal(42)
    assert usdc.value_usd == Decimal(0)


@pytest.mark.asyncio
async def test_portfolio_error_is_raised_with_status_and_body(pair):
    def handler(request):
        return httpx.Response(429, text="rate limited")

    with pytest.raises(OneInchAPIError) as exc:
        await _reader(handler).get_balances(WALLET, pair)

    assert exc.value.status_code == 429
    assert "rate limited" in str(exc.value)


@pytest.mark.asyncio
async def test_invalid_wallet_rejected(pair):
    handler, seen = _snapshot_handler([])

    with pytest.raises(ValueError):
        await _reader(handler).get_balances("not-an-address", pair)
    assert seen == []


@pytest.mark.asyncio
async def test_prices_keyed_by_lowercase_address(pair):
    def handler(request):
        assert request.url.path == f"/price/v1.1/8453/{WETH.address},{USDC.address}"
        assert request.url.params["currency"] == "USD"
        assert request.headers["Authorization"] == "token"
        return httpx.Response(
            200, json={WETH.address: "3991.8479516", USDC.address: "0.999999999998044"}
        )

    prices = await _reader(handler).get_token_prices(pair.addresses)

    assert prices == {WETH.key: "3991.8479516", USDC.key: "0.999999999998044"}


@pytest.mark.asyncio
async def test_price_failure_yields_empty_map(pair):
    def handler(request):
        return httpx.Response(500, text="upstream down")

    assert await _reader(handler).get_token_prices(pair.addresses) == {}


@pytest.mark.asyncio
async def test_prices_need_exactly_two_tokens():
    handler, _ = _snapshot_handler([])
    with pytest.raises(ValueError):
        await _reader(handler).get_token_prices([WETH.address])
