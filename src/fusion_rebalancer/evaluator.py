"""
Imbalance evaluator: decides whether a two-token wallet needs a swap to get
back to a 50/50 USD split, and how much of which token to sell.

Pure: no I/O, no clock, no hidden state.
"""

from __future__ import annotations

import decimal
from decimal import Decimal, InvalidOperation
from typing import Union

from .errors import PriceUnavailableError
from .models import (
    BalanceSnapshot,
    PriceMap,
    RebalanceAction,
    RebalanceDecision,
    SwapDirection,
    Token,
)

Number = Union[Decimal, float, int, str]

# Wide enough for 18-decimal amounts on large balances without rounding
_PRECISION = 78


def to_smallest_unit(amount: Decimal, decimals: int) -> int:
    """Scale a token amount to its integer unit, always rounding down."""
    with decimal.localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = Decimal(amount).scaleb(decimals)
        return int(scaled.to_integral_value(rounding=decimal.ROUND_FLOOR))


def parse_price(token: Token, prices: PriceMap, balances: dict[str, Decimal]) -> Decimal:
    raw = prices.get(token.key)
    try:
        price = Decimal(str(raw)) if raw is not None else None
    except InvalidOperation:
        price = None
    if price is None or not price.is_finite() or price <= 0:
        raise PriceUnavailableError(token.symbol, raw, balances, prices)
    return price


def evaluate(
    balance_a: BalanceSnapshot,
    balance_b: BalanceSnapshot,
    prices: PriceMap,
    tolerance: Number,
) -> RebalanceDecision:
    """Return a swap decision for the pair, or no action inside the band.

    ``threshold = target * (1 + tolerance)`` where ``target`` is half the
    total USD value. The side above the threshold sells exactly its excess
    over ``target``, floored to whole smallest units.
    """
    a = Decimal(balance_a.value_usd)
    b = Decimal(balance_b.value_usd)
    tol = Decimal(str(tolerance))
    if a < 0 or b < 0:
        raise ValueError(f"Balances must be non-negative: {a}, {b}")
    if tol < 0:
        raise ValueError(f"Tolerance must be non-negative: {tol}")

    with decimal.localcontext() as ctx:
        ctx.prec = _PRECISION
        total = a + b
        target = total / 2
        threshold = target + target * tol

        if a > threshold:
            direction, excess = SwapDirection.A_TO_B, a - target
            seller, buyer = balance_a.token, balance_b.token
        elif b > threshold:
            direction, excess = SwapDirection.B_TO_A, b - target
            seller, buyer = balance_b.token, balance_a.token
        else:
            return RebalanceDecision(
                action=RebalanceAction.NONE,
                total_usd=total,
                target_usd=target,
                threshold_usd=threshold,
            )

        balances = {balance_a.token.symbol: a, balance_b.token.symbol: b}
        price = parse_price(seller, prices, balances)
        # Floor the division too so rounding can never push past the target
        ctx.rounding = decimal.ROUND_FLOOR
        amount_tokens = excess / price

    return RebalanceDecision(
        action=RebalanceAction.SWAP,
        total_usd=total,
        target_usd=target,
        threshold_usd=threshold,
        direction=direction,
        from_token=seller,
        to_token=buyer,
        excess_usd=excess,
        amount=to_smallest_unit(amount_tokens, seller.decimals),
    )
