"""Error types raised by the rebalancer."""

from typing import Any, Mapping, Optional


class RebalancerError(Exception):
    """Base class for rebalancer failures."""


class ConfigurationError(RebalancerError):
    """Required configuration is missing; the process must not start."""


class OneInchAPIError(RebalancerError):
    """1inch API answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str, url: str = "") -> None:
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"1inch API returned status {status_code}: {body}")


class PriceUnavailableError(RebalancerError):
    """A USD price needed to size the swap is missing or unusable."""

    def __init__(
        self,
        token: str,
        price: Any,
        balances: Mapping[str, Any],
        prices: Mapping[str, str],
    ) -> None:
        self.token = token
        self.price = price
        self.balances = dict(balances)
        self.prices = dict(prices)
        super().__init__(
            f"No usable USD price for {token} (got {price!r}); "
            f"balances={self.balances} prices={self.prices}"
        )


class NoQuoteError(RebalancerError):
    """The swap venue returned no viable quote or preset."""


class TransactionSubmissionError(RebalancerError):
    """Signing or broadcasting a transaction failed."""

    def __init__(self, payload: Mapping[str, Any], nonce: Optional[int], cause: Exception) -> None:
        self.payload = dict(payload)
        self.nonce = nonce
        self.cause = cause
        super().__init__(
            f"Transaction signing or broadcasting failed (nonce={nonce}, payload={self.payload}): {cause}"
        )


class DealLaunchError(RebalancerError):
    """A confidential-compute deal could not be created."""
