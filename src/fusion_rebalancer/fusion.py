"""
Swap executor: sells one token for the other as a 1inch Fusion order.

Fusion orders are Dutch auctions filled asynchronously by resolvers, so a
swap is: quote -> build + sign order -> submit -> poll status until the
order is filled, expires or is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol

from .chain import ChainClient
from .errors import NoQuoteError
from .models import OrderStatus, OrderStatusReport, SwapIntent, SwapOutcome, SwapResult
from .oneinch import OneInchClient

logger = logging.getLogger(__name__)

SOURCE = "fusion-rebalancer"

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


@dataclass(frozen=True)
class PreparedOrder:
    order_hash: str
    quote_id: str
    order: dict[str, Any]
    signature: str
    extension: str


class SwapVenue(Protocol):
    async def get_quote(self, intent: SwapIntent) -> Optional[dict[str, Any]]: ...

    async def create_order(self, intent: SwapIntent, quote: dict[str, Any]) -> PreparedOrder: ...

    async def submit_order(self, order: PreparedOrder) -> str: ...

    async def get_order_status(self, order_hash: str) -> OrderStatusReport: ...


class FusionClient:
    """1inch Fusion REST adapter; orders are signed with the wallet's key."""

    def __init__(self, api: OneInchClient, chain: ChainClient) -> None:
        self.api = api
        self.chain = chain

    @property
    def _quoter(self) -> str:
        return f"/fusion/quoter/v2.0/{self.api.chain_id}"

    @property
    def _relayer(self) -> str:
        return f"/fusion/relayer/v2.0/{self.api.chain_id}"

    @property
    def _orders(self) -> str:
        return f"/fusion/orders/v2.0/{self.api.chain_id}"

    def _params(self, intent: SwapIntent) -> dict[str, Any]:
        return {
            "fromTokenAddress": intent.from_token.address,
            "toTokenAddress": intent.to_token.address,
            "amount": str(intent.amount),
            "walletAddress": intent.wallet_address,
            "enableEstimate": "true",
            "source": SOURCE,
        }

    async def get_quote(self, intent: SwapIntent) -> Optional[dict[str, Any]]:
        return await self.api.get(f"{self._quoter}/quote/receive", params=self._params(intent))

    async def create_order(self, intent: SwapIntent, quote: dict[str, Any]) -> PreparedOrder:
        params = {**self._params(intent), "preset": recommended_preset(quote)}
        built = await self.api.post(f"{self._quoter}/quote/build", json=quote, params=params)
        typed_data = built["typedData"]
        return PreparedOrder(
            order_hash=built["orderHash"],
            quote_id=str(quote.get("quoteId", "")),
            order=typed_data["message"],
            signature=self.chain.sign_typed_data(typed_data),
            extension=built.get("extension", "0x"),
        )

    async def submit_order(self, order: PreparedOrder) -> str:
        await self.api.post(
            f"{self._relayer}/order/submit",
            json={
                "order": order.order,
                "signature": order.signature,
                "extension": order.extension,
                "quoteId": order.quote_id,
            },
        )
        return order.order_hash

    async def get_order_status(self, order_hash: str) -> OrderStatusReport:
        data = await self.api.get(f"{self._orders}/order/status/{order_hash}")
        try:
            status = OrderStatus(data["status"])
        except ValueError:
            logger.warning(f"Unknown order status {data['status']!r} for {order_hash}, still waiting")
            status = OrderStatus.UNKNOWN
        fills = data.get("fills") or []
        fill_tx = fills[0].get("txHash") if fills else None
        return OrderStatusReport(status=status, fill_tx_hash=fill_tx)


def recommended_preset(quote: Optional[dict[str, Any]]) -> Optional[str]:
    """Name of the recommended auction preset, or None if the quote has none."""
    if not quote:
        return None
    presets = quote.get("presets") or {}
    preset = quote.get("recommended_preset") or quote.get("recommendedPreset")
    if not presets or not preset or preset not in presets:
        return None
    return preset


_OUTCOMES = {
    OrderStatus.FILLED: SwapOutcome.FILLED,
    OrderStatus.EXPIRED: SwapOutcome.EXPIRED,
    OrderStatus.CANCELLED: SwapOutcome.CANCELLED,
}


class SwapExecutor:
    """Drives one swap from quote to a terminal order status.

    ``poll_timeout`` bounds the status loop in seconds; ``None`` or ``0``
    polls until the venue reports a terminal status.
    """

    def __init__(
        self,
        venue: SwapVenue,
        poll_interval: float = 30.0,
        poll_timeout: Optional[float] = 1800.0,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        self.venue = venue
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout or None
        self._sleep = sleep
        self._clock = clock

    async def execute(self, intent: SwapIntent) -> SwapResult:
        logger.info(
            f"Swapping {intent.from_token.symbol} to {intent.to_token.symbol} "
            f"amount {intent.amount} (smallest unit)",
            extra={"from": intent.from_token.address, "to": intent.to_token.address},
        )

        quote = await self.venue.get_quote(intent)
        if recommended_preset(quote) is None:
            raise NoQuoteError(
                f"No quote found for {intent.from_token.symbol}->{intent.to_token.symbol} "
                f"amount {intent.amount}"
            )
        logger.info("Quote obtained", extra={"quote_id": quote.get("quoteId")})

        order = await self.venue.create_order(intent, quote)
        logger.info("Order created", extra={"order_hash": order.order_hash})

        order_hash = await self.venue.submit_order(order)
        logger.info(f"Order submitted: {order_hash}")

        return await self.wait_for_terminal(order_hash)

    async def wait_for_terminal(self, order_hash: str) -> SwapResult:
        start = self._clock()
        polls = 0

        while True:
            polls += 1
            report = await self._check_status(order_hash)
            if report is not None and report.status.is_terminal:
                return self._finish(order_hash, report, polls, start)

            elapsed = self._clock() - start
            if self.poll_timeout is not None and elapsed >= self.poll_timeout:
                logger.warning(
                    f"Order {order_hash} not terminal after {elapsed:.0f}s, giving up",
                    extra={"polls": polls},
                )
                return SwapResult(order_hash, SwapOutcome.UNDETERMINED, None, polls, elapsed)

            logger.info(f"Order still pending, waiting {self.poll_interval:g} seconds before next check...")
            await self._sleep(self.poll_interval)

    async def _check_status(self, order_hash: str) -> Optional[OrderStatusReport]:
        try:
            return await self.venue.get_order_status(order_hash)
        except Exception as e:
            logger.warning(f"Order status check failed, retrying: {e}")
            return None

    def _finish(
        self, order_hash: str, report: OrderStatusReport, polls: int, start: float
    ) -> SwapResult:
        elapsed = self._clock() - start
        outcome = _OUTCOMES[report.status]
        if outcome is SwapOutcome.FILLED:
            logger.info(f"Order filled with tx hash: {report.fill_tx_hash}")
        else:
            logger.warning(f"Order {outcome.value}", extra={"order_hash": order_hash})
        logger.info(f"Order executed for {elapsed:.1f} sec")
        return SwapResult(order_hash, outcome, report.fill_tx_hash, polls, elapsed)
