"""Allowance manager: makes sure the 1inch router may spend the token being sold."""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .chain import ChainClient
from .models import Token
from .oneinch import OneInchClient

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]


class AllowanceManager:
    def __init__(
        self,
        api: OneInchClient,
        chain: ChainClient,
        confirmation_delay: float = 10.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.api = api
        self.chain = chain
        self.confirmation_delay = confirmation_delay
        self._sleep = sleep

    @property
    def _swap_path(self) -> str:
        return f"/swap/v6.1/{self.api.chain_id}"

    async def check_allowance(self, token: Token) -> int:
        logger.info(f"Checking {token.symbol} allowance...")
        res = await self.api.get(
            f"{self._swap_path}/approve/allowance",
            params={"tokenAddress": token.address, "walletAddress": self.chain.address},
        )
        allowance = int(res["allowance"])
        logger.info(f"Allowance: {allowance}", extra={"token": token.symbol})
        return allowance

    async def ensure_allowance(self, token: Token, amount: int) -> Optional[str]:
        """Approve ``amount`` if the current allowance is short.

        Returns the approval tx hash, or None when nothing was sent. After
        broadcasting, waits ``confirmation_delay`` seconds for it to be mined.
        """
        allowance = await self.check_allowance(token)
        if allowance >= amount:
            logger.info("Allowance is sufficient for the swap")
            return None

        logger.info("Insufficient allowance. Creating approval transaction...")
        approve_tx = await self.api.get(
            f"{self._swap_path}/approve/transaction",
            params={"tokenAddress": token.address, "amount": str(amount)},
        )

        tx_hash = await self.chain.sign_and_send(
            {
                "to": approve_tx["to"],
                "data": approve_tx["data"],
                "value": approve_tx.get("value", 0),
                "gasPrice": approve_tx.get("gasPrice"),
            }
        )
        logger.info(f"Approval transaction sent: {tx_hash}")
        logger.info(f"Waiting {self.confirmation_delay:g}s for confirmation...")
        await self._sleep(self.confirmation_delay)
        return tx_hash
