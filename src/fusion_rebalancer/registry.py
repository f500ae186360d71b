"""
Strategy registry: in-memory strategies plus the per-user trigger guard.

One registry is created at process start and shared by the HTTP handlers
and the scheduler. All mutations go through ``register``, ``trigger`` and
``complete``; everything runs on one event loop, so no locking is needed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from .models import DealHandle, DealStatus, Strategy

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class DealLauncher(Protocol):
    configured: bool

    async def launch(self, strategy: Strategy) -> DealHandle: ...


class GuardState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"


@dataclass
class _Lease:
    acquired_at: float
    deadline: float


class InFlightGuard:
    """Per-key Idle -> InFlight -> Idle state machine with a hard expiry.

    A lease past its deadline is force-released the next time the key (or
    the whole guard) is inspected.
    """

    def __init__(self, timeout: float, clock: Clock = time.time) -> None:
        self.timeout = timeout
        self._clock = clock
        self._leases: dict[str, _Lease] = {}

    def _expire(self, key: str, now: float) -> None:
        lease = self._leases.get(key)
        if lease is not None and now >= lease.deadline:
            del self._leases[key]
            logger.warning(f"Deal timeout - removing {key} from active deals")

    def state(self, key: str) -> GuardState:
        self._expire(key, self._clock())
        return GuardState.IN_FLIGHT if key in self._leases else GuardState.IDLE

    def try_acquire(self, key: str) -> bool:
        if self.state(key) is GuardState.IN_FLIGHT:
            return False
        now = self._clock()
        self._leases[key] = _Lease(acquired_at=now, deadline=now + self.timeout)
        return True

    def release(self, key: str) -> bool:
        return self._leases.pop(key, None) is not None

    def expire_stale(self) -> None:
        now = self._clock()
        for key in list(self._leases):
            self._expire(key, now)

    def active_count(self) -> int:
        self.expire_stale()
        return len(self._leases)


class TriggerResult(str, Enum):
    DISPATCHED = "dispatched"
    SKIPPED_IN_FLIGHT = "skipped_in_flight"
    SKIPPED_THROTTLED = "skipped_throttled"
    NOT_CONFIGURED = "not_configured"
    FAILED = "failed"


class StrategyRegistry:
    def __init__(
        self,
        launcher: DealLauncher,
        cooldown: float = 120.0,
        deal_timeout: float = 600.0,
        clock: Clock = time.time,
    ) -> None:
        self.launcher = launcher
        self.cooldown = cooldown
        self._clock = clock
        self._strategies: dict[str, Strategy] = {}
        self.guard = InFlightGuard(deal_timeout, clock)

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    # ── Strategies ─────────────────────────────────────────────────────────────

    def register(self, user_id: str, protected_data_address: str, wallet_address: str) -> Strategy:
        """Store (or overwrite) the strategy for a user."""
        strategy = Strategy(
            userId=user_id,
            protectedDataAddress=protected_data_address,
            walletAddress=wallet_address,
            createdAt=self._now_ms(),
        )
        self._strategies[user_id] = strategy
        logger.info(
            f"Strategy stored for user {user_id}",
            extra={"protected_data": protected_data_address, "wallet": wallet_address},
        )
        return strategy

    def get(self, user_id: str) -> Optional[Strategy]:
        return self._strategies.get(user_id)

    def list(self) -> list[Strategy]:
        return list(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)

    @property
    def active_deals(self) -> int:
        return self.guard.active_count()

    # ── Trigger lifecycle ──────────────────────────────────────────────────────

    async def trigger(self, user_id: str) -> TriggerResult:
        """Launch a confidential-compute rebalance for one user, if allowed.

        Skipped while a previous deal is in flight or within the cool-down
        window. Launch failures release the guard and are not raised.
        """
        strategy = self._strategies.get(user_id)
        if strategy is None:
            raise KeyError(user_id)

        if not self.launcher.configured:
            logger.error("IEXEC_APP_ADDRESS not configured, skipping iExec trigger")
            return TriggerResult.NOT_CONFIGURED

        if self.guard.state(user_id) is GuardState.IN_FLIGHT:
            logger.info(f"Skipping user {user_id} - deal already in progress")
            return TriggerResult.SKIPPED_IN_FLIGHT

        now_ms = self._now_ms()
        if strategy.lastTriggered is not None:
            since = (now_ms - strategy.lastTriggered) / 1000
            if since < self.cooldown:
                logger.info(f"Skipping user {user_id} - triggered {int(since)}s ago")
                return TriggerResult.SKIPPED_THROTTLED

        self.guard.try_acquire(user_id)
        strategy.lastTriggered = now_ms
        strategy.lastDealStatus = "pending"
        logger.info(
            f"Triggering iExec worker for user {user_id}",
            extra={"protected_data": strategy.protectedDataAddress},
        )

        try:
            handle = await self.launcher.launch(strategy)
        except Exception as e:
            logger.error(f"Failed to trigger iExec for user {user_id}: {e}", exc_info=True)
            self.guard.release(user_id)
            strategy.lastDealStatus = "failed"
            return TriggerResult.FAILED

        strategy.activeDealId = handle.deal_id
        strategy.lastDealStatus = "running"
        logger.info(
            f"iExec deal created for user {user_id}",
            extra={"deal_id": handle.deal_id, "tx_hash": handle.tx_hash},
        )
        return TriggerResult.DISPATCHED

    def complete(self, user_id: str, status: DealStatus) -> Strategy:
        """Completion signal from the deal: record the status and release the guard."""
        strategy = self._strategies.get(user_id)
        if strategy is None:
            raise KeyError(user_id)
        strategy.lastDealStatus = status
        released = self.guard.release(user_id)
        logger.info(
            f"Deal for user {user_id} finished: {status}",
            extra={"deal_id": strategy.activeDealId, "released": released},
        )
        return strategy
