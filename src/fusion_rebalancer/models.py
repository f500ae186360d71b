"""Domain models for the Fusion Rebalancer."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel

PriceMap = dict[str, str]  # lower-cased token address -> USD price


# ── Tokens & balances ──────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Token:
    address: str
    symbol: str
    decimals: int

    @property
    def key(self) -> str:
        return self.address.lower()


@dataclass(frozen=True)
class TokenPair:
    """The two tokens held 50/50 by a rebalanced wallet."""
    a: Token
    b: Token

    @property
    def addresses(self) -> list[str]:
        return [self.a.address, self.b.address]


@dataclass(frozen=True)
class BalanceSnapshot:
    token: Token
    value_usd: Decimal


# ── Decisions & intents ────────────────────────────────────────────────────────

class RebalanceAction(str, Enum):
    NONE = "none"
    SWAP = "swap"


class SwapDirection(str, Enum):
    A_TO_B = "a-to-b"
    B_TO_A = "b-to-a"


@dataclass(frozen=True)
class RebalanceDecision:
    action: RebalanceAction
    total_usd: Decimal
    target_usd: Decimal
    threshold_usd: Decimal
    direction: Optional[SwapDirection] = None
    from_token: Optional[Token] = None
    to_token: Optional[Token] = None
    excess_usd: Decimal = Decimal(0)
    amount: int = 0  # smallest unit of from_token

    @property
    def should_swap(self) -> bool:
        return self.action is RebalanceAction.SWAP


@dataclass(frozen=True)
class SwapIntent:
    from_token: Token
    to_token: Token
    amount: int
    wallet_address: str


# ── Fusion orders ──────────────────────────────────────────────────────────────

class OrderStatus(str, Enum):
    PENDING = "pending"
    PARTIALLY_FILLED = "partially-filled"
    FILLED = "filled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FALSE_PREDICATE = "false-predicate"
    NOT_ENOUGH_BALANCE_OR_ALLOWANCE = "not-enough-balance-or-allowance"
    WRONG_PERMIT = "wrong-permit"
    INVALID_SIGNATURE = "invalid-signature"
    UNKNOWN = "unknown"  # anything the venue reports that we do not recognise

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FILLED, OrderStatus.EXPIRED, OrderStatus.CANCELLED)


class SwapOutcome(str, Enum):
    FILLED = "filled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    UNDETERMINED = "undetermined"


@dataclass(frozen=True)
class OrderStatusReport:
    status: OrderStatus
    fill_tx_hash: Optional[str] = None


@dataclass(frozen=True)
class SwapResult:
    order_hash: str
    outcome: SwapOutcome
    tx_hash: Optional[str]
    polls: int
    elapsed_seconds: float


@dataclass
class RebalanceReport:
    wallet_address: str
    balances: tuple[BalanceSnapshot, ...]
    decision: RebalanceDecision
    approval_tx_hash: Optional[str] = None
    swap: Optional[SwapResult] = None
    notes: list[str] = field(default_factory=list)


# ── Strategies (HTTP surface) ──────────────────────────────────────────────────

DealStatus = Literal["pending", "running", "completed", "failed"]


class Strategy(BaseModel):
    userId: str
    protectedDataAddress: str
    walletAddress: str
    createdAt: int  # ms since epoch
    lastTriggered: Optional[int] = None
    activeDealId: Optional[str] = None
    lastDealStatus: Optional[DealStatus] = None


@dataclass(frozen=True)
class DealHandle:
    deal_id: str
    tx_hash: str
