"""WETH/USDC 50/50 rebalancer executing swaps as 1inch Fusion orders."""

__version__ = "0.1.0"
