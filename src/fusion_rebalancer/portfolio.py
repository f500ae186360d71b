"""
Portfolio reader: USD balances from the 1inch Portfolio API and unit USD
prices from the 1inch Price API.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

import structlog
from eth_utils import is_address

from .models import BalanceSnapshot, PriceMap, Token, TokenPair
from .oneinch import OneInchClient

logger = structlog.get_logger(__name__)

PORTFOLIO_SNAPSHOT_PATH = "/portfolio/portfolio/v5.0/tokens/snapshot"


class PortfolioReader:
    """Reads balances and prices for one token pair."""

    def __init__(self, api: OneInchClient) -> None:
        self.api = api

    async def get_portfolio_snapshot(self, wallet_address: str) -> list[dict[str, Any]]:
        """Per-position records for a wallet. Errors are logged and re-raised."""
        if not wallet_address or not is_address(wallet_address):
            raise ValueError(f"Invalid wallet address: {wallet_address!r}")

        try:
            data = await self.api.get(
                PORTFOLIO_SNAPSHOT_PATH,
                params={"addresses": [wallet_address], "chain_id": str(self.api.chain_id)},
            )
        except Exception as e:
            logger.error("portfolio_fetch_failed", wallet=wallet_address, error=str(e))
            raise

        return list(data.get("result", [])) if isinstance(data, dict) else list(data or [])

    async def get_balances(
        self, wallet_address: str, pair: TokenPair
    ) -> tuple[BalanceSnapshot, BalanceSnapshot]:
        """USD value held in each token of the pair (zero when absent)."""
        positions = await self.get_portfolio_snapshot(wallet_address)
        snapshots = (
            BalanceSnapshot(token=pair.a, value_usd=_position_value(positions, pair.a)),
            BalanceSnapshot(token=pair.b, value_usd=_position_value(positions, pair.b)),
        )
        for snap in snapshots:
            logger.info("balance", token=snap.token.symbol, value_usd=str(snap.value_usd))
        return snapshots

    async def get_token_prices(self, token_addresses: list[str]) -> PriceMap:
        """Unit USD prices keyed by lower-cased address.

        A failed fetch yields an empty map; the caller fails later when it
        needs a price that is not there.
        """
        if len(token_addresses) != 2:
            raise ValueError(f"Expected exactly two token addresses, got {len(token_addresses)}")

        path = f"/price/v1.1/{self.api.chain_id}/{','.join(token_addresses)}"
        try:
            data = await self.api.get(path, params={"currency": "USD"}, bearer=False)
        except Exception as e:
            logger.warning("price_fetch_failed", tokens=token_addresses, error=str(e))
            return {}

        if not isinstance(data, dict):
            logger.warning("price_fetch_unexpected_payload", payload=data)
            return {}
        return {str(address).lower(): str(price) for address, price in data.items()}


def _position_value(positions: list[dict[str, Any]], token: Token) -> Decimal:
    for position in positions:
        if str(position.get("contract_address", "")).lower() == token.key:
            try:
                return Decimal(str(position.get("value_usd") or 0))
            except InvalidOperation:
                logger.error("bad_position_value", token=token.symbol, value=position.get("value_usd"))
                raise
    return Decimal(0)
