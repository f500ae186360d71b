"""Thin async client for the 1inch Dev Portal APIs."""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from .errors import OneInchAPIError

logger = logging.getLogger(__name__)


class OneInchClient:
    """Authenticated GET/POST against api.1inch.com.

    Every call is logged with its URL. Non-2xx answers raise
    ``OneInchAPIError`` carrying the status code and body.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        chain_id: int,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.chain_id = chain_id
        self._api_token = api_token
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    def _headers(self, bearer: bool) -> dict[str, str]:
        # The Price API expects the bare token, everything else a Bearer token
        auth = f"Bearer {self._api_token}" if bearer else self._api_token
        return {"Accept": "application/json", "Authorization": auth}

    async def get(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        bearer: bool = True,
    ) -> Any:
        url = f"{self.base_url}{path}"
        logger.info(f"Calling API: {url}", extra={"params": params})
        resp = await self._client.get(url, params=params, headers=self._headers(bearer))
        return self._decode(resp)

    async def post(self, path: str, json: Any, params: Optional[dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        logger.info(f"Calling API: {url}")
        resp = await self._client.post(url, json=json, params=params, headers=self._headers(True))
        return self._decode(resp)

    @staticmethod
    def _decode(resp: httpx.Response) -> Any:
        if resp.is_error:
            raise OneInchAPIError(resp.status_code, resp.text, str(resp.url))
        if not resp.content:
            return None
        return resp.json()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
