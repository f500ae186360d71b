"""
Rebalance orchestrator: one end-to-end cycle for a wallet key:

1. Derive the wallet address from the key
2. Read USD balances and unit prices for the pair
3. Evaluate the imbalance against the tolerance band
4. If a swap is needed: ensure allowance, then run the Fusion swap
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from .allowance import AllowanceManager
from .chain import ChainClient
from .config import Settings
from .evaluator import evaluate
from .fusion import FusionClient, SwapExecutor
from .models import RebalanceReport, SwapIntent, Token, TokenPair
from .oneinch import OneInchClient
from .portfolio import PortfolioReader

logger = logging.getLogger(__name__)


def token_pair(settings: Settings) -> TokenPair:
    return TokenPair(
        a=Token(address=settings.weth_address, symbol="WETH", decimals=settings.weth_decimals),
        b=Token(address=settings.usdc_address, symbol="USDC", decimals=settings.usdc_decimals),
    )


class Rebalancer:
    """Keeps a wallet's two-token holdings at a 50/50 USD split."""

    def __init__(
        self,
        reader: PortfolioReader,
        pair: TokenPair,
        tolerance: float,
        chain_for: Callable[[str], ChainClient],
        allowance_for: Callable[[ChainClient], AllowanceManager],
        executor_for: Callable[[ChainClient], SwapExecutor],
    ) -> None:
        self.reader = reader
        self.pair = pair
        self.tolerance = tolerance
        self._chain_for = chain_for
        self._allowance_for = allowance_for
        self._executor_for = executor_for

    @classmethod
    def from_settings(cls, settings: Settings) -> "Rebalancer":
        api = OneInchClient(
            settings.oneinch_base_url,
            settings.dev_portal_api_token,
            settings.chain_id,
            timeout=settings.http_timeout_seconds,
        )
        return cls(
            reader=PortfolioReader(api),
            pair=token_pair(settings),
            tolerance=settings.offset,
            chain_for=lambda key: ChainClient(settings.node_url, key, settings.chain_id),
            allowance_for=lambda chain: AllowanceManager(
                api, chain, confirmation_delay=settings.approval_confirmation_delay_seconds
            ),
            executor_for=lambda chain: SwapExecutor(
                FusionClient(api, chain),
                poll_interval=settings.order_poll_interval_seconds,
                poll_timeout=settings.order_poll_timeout_seconds,
            ),
        )

    async def rebalance(self, private_key: str) -> RebalanceReport:
        chain = self._chain_for(private_key)
        try:
            return await self._cycle(chain)
        finally:
            await chain.close()

    async def _cycle(self, chain: ChainClient) -> RebalanceReport:
        wallet = chain.address
        logger.info(f"Rebalancing for wallet: {wallet}")

        balances = await self.reader.get_balances(wallet, self.pair)
        prices = await self.reader.get_token_prices(self.pair.addresses)
        decision = evaluate(balances[0], balances[1], prices, self.tolerance)

        logger.info(
            f"Total {decision.total_usd} USD, target {decision.target_usd} USD, "
            f"threshold {decision.threshold_usd} USD",
            extra={"tolerance": self.tolerance},
        )
        report = RebalanceReport(wallet_address=wallet, balances=balances, decision=decision)

        if not decision.should_swap:
            logger.info("No need to swap")
            return report

        if decision.amount <= 0:
            logger.warning(
                f"Excess of {decision.excess_usd} USD rounds to zero {decision.from_token.symbol}, skipping"
            )
            report.notes.append("amount rounds to zero")
            return report

        logger.info(
            f"Swapping {decision.from_token.symbol} to {decision.to_token.symbol}: "
            f"{decision.excess_usd} USD = {decision.amount} smallest units"
        )
        intent = SwapIntent(
            from_token=decision.from_token,
            to_token=decision.to_token,
            amount=decision.amount,
            wallet_address=wallet,
        )

        report.approval_tx_hash = await self._allowance_for(chain).ensure_allowance(
            intent.from_token, intent.amount
        )
        report.swap = await self._executor_for(chain).execute(intent)
        return report

    async def close(self) -> None:
        await self.reader.api.close()


def summarize(report: RebalanceReport) -> dict[str, Any]:
    """Plain-dict view of a report for result files and logs."""
    decision = report.decision
    out: dict[str, Any] = {
        "wallet": report.wallet_address,
        "balances_usd": {b.token.symbol: str(b.value_usd) for b in report.balances},
        "action": decision.action.value,
    }
    if decision.should_swap:
        out.update(
            {
                "from": decision.from_token.symbol,
                "direction": decision.direction.value,
                "to": decision.to_token.symbol,
                "amount": str(decision.amount),
                "excess_usd": str(decision.excess_usd),
                "approval_tx_hash": report.approval_tx_hash,
            }
        )
    if report.swap is not None:
        out["swap"] = {
            "order_hash": report.swap.order_hash,
            "outcome": report.swap.outcome.value,
            "tx_hash": report.swap.tx_hash,
            "elapsed_seconds": round(report.swap.elapsed_seconds, 1),
        }
    if report.notes:
        out["notes"] = list(report.notes)
    return out
