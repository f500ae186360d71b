"""Shared fixtures."""

from __future__ import annotations

import pytest

from fusion_rebalancer.models import DealHandle, Strategy, Token, TokenPair

WETH = Token(address="0x4200000000000000000000000000000000000006", symbol="WETH", decimals=18)
USDC = Token(address="0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913", symbol="USDC", decimals=6)

TEST_KEY = "0x" + "11" * 32
WALLET = "0x" + "ab" * 20


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLauncher:
    def __init__(self, configured: bool = True, fail: bool = False) -> None:
        self.configured = configured
        self.fail = fail
        self.calls: list[Strategy] = []

    async def launch(self, strategy: Strategy) -> DealHandle:
        self.calls.append(strategy)
        if self.fail:
            raise RuntimeError("matchOrders reverted")
        return DealHandle(deal_id=f"0xdeal{len(self.calls)}", tx_hash="0xabc")


async def no_sleep(seconds: float) -> None:
    return None


@pytest.fixture
def pair() -> TokenPair:
    return TokenPair(a=WETH, b=USDC)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def launcher() -> FakeLauncher:
    return FakeLauncher()
