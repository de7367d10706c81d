"""Single-shot HTTP POST client for webhook attempts.

One call to ``post`` performs exactly one request and always returns a
DeliveryResult; transport errors are classified, never raised, and never
retried here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from hookrelay.models import DeliveryResult, FailureClass

logger = logging.getLogger(__name__)

MAX_RESPONSE_BODY = 1000


class HttpClient:
    """Pooled async HTTP client producing normalized delivery results.

    The underlying ``httpx.AsyncClient`` is created lazily and shared by all
    attempts. ``aclose()`` (or leaving the ``async with`` block) releases idle
    connections.

    Example:
        ```python
        async with HttpClient() as client:
            result = await client.post(url, body, headers, timeout_ms=5000)
        ```
    """

    def __init__(
        self,
        transport: httpx.AsyncBaseTransport | None = None,
        max_connections: int = 100,
        max_keepalive_connections: int = 20,
    ) -> None:
        """Initialize the client.

        Args:
            transport: Optional transport (e.g. ``httpx.MockTransport`` in tests).
            max_connections: Connection pool size.
            max_keepalive_connections: Idle connections kept open.
        """
        self._transport = transport
        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive_connections,
        )
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                limits=self._limits,
                follow_redirects=False,
            )
        return self._client

    async def post(
        self,
        url: str,
        body: bytes | dict[str, Any],
        headers: dict[str, str],
        timeout_ms: int,
    ) -> DeliveryResult:
        """POST once and classify the outcome.

        The whole call is bounded by ``timeout_ms``; httpx's per-phase timeouts
        alone would allow a slow trickling response to run longer.

        Args:
            url: Destination URL.
            body: Pre-rendered JSON bytes, or a dict to serialize.
            headers: Request headers.
            timeout_ms: Total time budget in milliseconds.

        Returns:
            Success for 2xx; ``http_status`` failure for any other status;
            ``timeout`` or ``network_error`` failure when no response arrived.
        """
        timeout_s = timeout_ms / 1000.0
        client = self._get_client()
        started = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - started) * 1000.0, 3)

        request_kwargs: dict[str, Any] = {"headers": headers, "timeout": timeout_s}
        if isinstance(body, bytes):
            request_kwargs["content"] = body
        else:
            request_kwargs["json"] = body

        try:
            async with asyncio.timeout(timeout_s):
                response = await client.post(url, **request_kwargs)
        except (httpx.TimeoutException, TimeoutError):
            return DeliveryResult.failure(
                FailureClass.TIMEOUT,
                f"Request timeout after {timeout_ms}ms",
                latency_ms=elapsed_ms(),
            )
        except httpx.HTTPError as e:
            return DeliveryResult.failure(
                FailureClass.NETWORK_ERROR,
                str(e) or type(e).__name__,
                latency_ms=elapsed_ms(),
            )
        except OSError as e:
            return DeliveryResult.failure(
                FailureClass.NETWORK_ERROR,
                str(e) or type(e).__name__,
                latency_ms=elapsed_ms(),
            )

        latency_ms = elapsed_ms()
        text = response.text[:MAX_RESPONSE_BODY] if response.content else None

        if 200 <= response.status_code < 300:
            return DeliveryResult.ok(response.status_code, latency_ms, response_body=text)

        reason = response.reason_phrase or "error"
        return DeliveryResult.failure(
            FailureClass.HTTP_STATUS,
            f"HTTP {response.status_code}: {reason}",
            latency_ms=latency_ms,
            status_code=response.status_code,
            response_body=text,
        )

    async def aclose(self) -> None:
        """Close pooled connections. Safe to call repeatedly."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            logger.debug("HTTP client closed")
        self._client = None

    async def __aenter__(self) -> HttpClient:
        return self

    async def __aexit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        await self.aclose()
