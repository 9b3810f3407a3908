"""
hl_client.py: one-shot `/info` requests against Hyperliquid.

POST {base_url}/info with {"type": ...}; transport and HTTP failures are
wrapped in NetworkError so the stream supervisor treats them like any
other session failure.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx
from hyperliquid.utils import constants

from feed.errors import NetworkError
from feed.observability.metrics import record_info_request

logger = logging.getLogger("hl_client")

INFO_REQUEST_TYPES = ("spotMeta", "meta", "spotMetaAndAssetCtxs", "metaAndAssetCtxs")


def base_url_for(network: str) -> str:
    n = (network or "mainnet").strip().lower()
    if n == "testnet":
        return constants.TESTNET_API_URL
    return constants.MAINNET_API_URL


class InfoClient:
    """Request function for the `/info` endpoint.

    Owns one `httpx.AsyncClient` unless one is passed in (tests pass a
    client built on `httpx.MockTransport`).
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def fetch(self, request_type: str, **params: Any) -> Any:
        """Issue one `/info` request and return the decoded JSON body."""
        body: Dict[str, Any] = {"type": request_type, **params}
        url = f"{self.base_url}/info"
        start = time.perf_counter()
        ok = False
        try:
            r = await self._get_client().post(url, json=body)
            r.raise_for_status()
            payload = r.json()
            ok = True
            return payload
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"/info {request_type} returned HTTP {e.response.status_code}",
                details={"request_type": request_type, "status": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            raise NetworkError(
                f"/info {request_type} failed: {e}",
                details={"request_type": request_type},
            ) from e
        except ValueError as e:
            raise NetworkError(
                f"/info {request_type} returned a non-JSON body",
                details={"request_type": request_type},
            ) from e
        finally:
            record_info_request(request_type, ok, (time.perf_counter() - start) * 1000)

    async def __call__(self, request_type: str, **params: Any) -> Any:
        return await self.fetch(request_type, **params)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.debug("[hl_client] HTTP client closed")

    async def __aenter__(self) -> "InfoClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
