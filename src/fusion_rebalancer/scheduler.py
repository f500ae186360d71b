"""
Rebalance scheduler: sweeps every registered strategy on a fixed interval
and triggers a confidential-compute rebalance for each one the registry
lets through.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from .registry import StrategyRegistry, TriggerResult

logger = logging.getLogger(__name__)


class RebalanceScheduler:
    """Fixed-interval strategy sweep."""

    def __init__(self, registry: StrategyRegistry, interval_seconds: float) -> None:
        self.registry = registry
        self.interval_seconds = interval_seconds

        self._running = False
        self._stats: dict[str, Any] = {
            "sweeps": 0,
            "dispatched": 0,
            "skipped": 0,
            "failed": 0,
            "errors": 0,
        }

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        logger.info(
            "Starting rebalance scheduler",
            extra={"interval_seconds": self.interval_seconds},
        )
        self._running = True
        await self._run()

    async def stop(self) -> None:
        logger.info("Stopping rebalance scheduler")
        self._running = False

    async def _run(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            if not self._running:
                break
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Critical error in strategy sweep: {e}", exc_info=True)
                self._stats["errors"] += 1

    async def sweep(self) -> None:
        """Trigger every strategy once; one failure never stops the others."""
        self._stats["sweeps"] += 1
        logger.info(f"{datetime.now(timezone.utc).isoformat()} Checking strategies for rebalancing...")

        strategies = self.registry.list()
        if not strategies:
            logger.info("No strategies to process")
            return

        self.registry.guard.expire_stale()
        logger.info(
            f"Found {len(strategies)} strategy(ies) to process",
            extra={"active_deals": self.registry.active_deals},
        )

        for strategy in strategies:
            try:
                result = await self.registry.trigger(strategy.userId)
            except Exception as e:
                logger.error(f"Error processing strategy for {strategy.userId}: {e}", exc_info=True)
                self._stats["errors"] += 1
                continue
            self._count(result)

        logger.info("Completed rebalancing check")

    def _count(self, result: TriggerResult) -> None:
        if result is TriggerResult.DISPATCHED:
            self._stats["dispatched"] += 1
        elif result is TriggerResult.FAILED:
            self._stats["failed"] += 1
        else:
            self._stats["skipped"] += 1

    def get_stats(self) -> dict[str, Any]:
        return {**self._stats, "running": self._running}
