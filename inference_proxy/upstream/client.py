"""
Client for the single upstream inference service.

All requests go through one pooled ``httpx.AsyncClient`` bound to the upstream
base URL. Responses are always opened in streaming mode so the caller sees the
status line and headers before deciding how to consume the body.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import httpx

from inference_proxy.context import UpstreamConfig
from inference_proxy.errors import UpstreamTimeout, UpstreamUnavailable
from inference_proxy.proxy.models import ProxyRequest

logger = logging.getLogger("uvicorn.error")


class UpstreamClient:
    """Issues one outbound request per inbound request to the fixed upstream."""

    def __init__(
        self,
        config: UpstreamConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=httpx.Timeout(config.timeout),
            follow_redirects=False,
            transport=transport,
        )
        logger.info(f"[Upstream] Initialized with URL: {config.base_url}")

    async def send(
        self, proxy_request: ProxyRequest, timeout: Optional[float] = None
    ) -> httpx.Response:
        """
        Send a request and return as soon as the upstream headers arrive.

        The returned response body has not been read; the caller must close it.
        """
        request = self._client.build_request(
            method=proxy_request.method,
            url=proxy_request.url,
            headers=proxy_request.headers,
            content=proxy_request.body,
            timeout=httpx.Timeout(timeout) if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        path = proxy_request.target_path
        try:
            return await self._client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.error(f"[Upstream] Timeout for {path}: {e}")
            raise UpstreamTimeout(path, str(e) or "timed out") from e
        except httpx.TransportError as e:
            logger.error(f"[Upstream] Failed to connect for {path}: {e}")
            raise UpstreamUnavailable(path, str(e) or type(e).__name__) from e

    @asynccontextmanager
    async def request(
        self, method: str, path: str, timeout: Optional[float] = None
    ) -> AsyncIterator[httpx.Response]:
        """Open a body-less request and close the response on exit."""
        response = await self.send(
            ProxyRequest(method=method, target_path=path), timeout=timeout
        )
        try:
            yield response
        finally:
            await response.aclose()

    @staticmethod
    async def iter_body(
        response: httpx.Response, path: str, raw: bool = False
    ) -> AsyncIterator[bytes]:
        """
        Iterate over the response body in arrival order.

        ``raw=True`` yields bytes exactly as received on the wire; otherwise any
        content-encoding is decoded. Transport failures while reading are
        translated like failures while connecting.
        """
        chunks = response.aiter_raw() if raw else response.aiter_bytes()
        try:
            async for chunk in chunks:
                yield chunk
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(path, str(e) or "timed out while reading body") from e
        except httpx.TransportError as e:
            raise UpstreamUnavailable(path, str(e) or type(e).__name__) from e

    async def aclose(self) -> None:
        await self._client.aclose()
