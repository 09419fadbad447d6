"""
Webhook delivery client (httpx).

One POST per call, classified into a DeliveryOutcome. The client never
raises for HTTP, transport or URL problems; callers decide what to do with
the outcome.
"""

from __future__ import annotations

import asyncio
import time
from typing import Optional

import httpx
from loguru import logger

from .metrics import metrics_registry
from .models import DeliveryOutcome, Endpoint

JSON_HEADERS = {"Content-type": "application/json"}


def classify_status(status_code: int) -> DeliveryOutcome:
    """200 -> success, 404 -> endpoint_invalid, anything else -> retryable."""
    if status_code == 200:
        return DeliveryOutcome.success(status_code)
    if status_code == 404:
        return DeliveryOutcome.endpoint_invalid(status_code, "endpoint not found")
    return DeliveryOutcome.retryable(status_code, f"HTTP {status_code}")


class WebhookClient:
    """Pooled async HTTP client for a single webhook destination.

    Idle pooled connections expire after ``keepalive_expiry`` seconds so a
    long quiet period never hands out a connection the server already
    dropped. The pool belongs to one pipeline and therefore one destination,
    so ``max_connections`` is effectively a per-destination cap.

    Args:
        timeout: Per-operation timeout (connect/read/write/pool) in seconds
        total_timeout: Upper bound for a whole attempt; defaults to 3x timeout
        keepalive_expiry: Idle lifetime of pooled connections in seconds
        max_connections: Connection cap for the pool
        max_keepalive_connections: Idle connections kept for reuse
        transport: Optional httpx transport (tests use httpx.MockTransport)
        pipeline_id: Label for logs and metrics
    """

    def __init__(
        self,
        *,
        timeout: float = 10.0,
        total_timeout: Optional[float] = None,
        keepalive_expiry: float = 1.0,
        max_connections: int = 1000,
        max_keepalive_connections: int = 10,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        pipeline_id: str = "relay",
    ):
        if timeout <= 0:
            raise ValueError("timeout must be > 0")
        self.timeout = timeout
        self.total_timeout = total_timeout if total_timeout is not None else timeout * 3
        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=min(max_keepalive_connections, max_connections),
            keepalive_expiry=keepalive_expiry,
        )
        self._transport = transport
        self._pipeline_id = pipeline_id
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def started(self) -> bool:
        return self._client is not None

    async def start(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout),
            limits=self._limits,
            transport=self._transport,
            follow_redirects=False,
        )
        logger.debug(f"[{self._pipeline_id}] Webhook client started (timeout={self.timeout}s)")

    async def aclose(self) -> None:
        """Release the connection pool; safe to call more than once."""
        if self._client is None:
            return
        client, self._client = self._client, None
        await client.aclose()
        logger.debug(f"[{self._pipeline_id}] Webhook client closed")

    async def send(self, endpoint: Endpoint, payload: str) -> DeliveryOutcome:
        """POST ``payload`` (JSON text) to ``endpoint`` and classify the result."""
        if self._client is None:
            await self.start()

        t0 = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._client.post(
                    endpoint.url,
                    content=payload.encode("utf-8"),
                    headers=JSON_HEADERS,
                ),
                timeout=self.total_timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            return DeliveryOutcome.retryable(None, f"timeout: {type(exc).__name__}")
        except httpx.HTTPError as exc:
            return DeliveryOutcome.retryable(None, f"transport error: {type(exc).__name__}: {exc}")
        except httpx.InvalidURL as exc:
            logger.error(f"[{self._pipeline_id}] Request URL rejected by httpx: {exc}")
            return DeliveryOutcome.retryable(None, f"invalid url: {exc}")
        except Exception as exc:
            logger.exception(f"[{self._pipeline_id}] Unexpected error during webhook POST")
            return DeliveryOutcome.retryable(None, f"unexpected error: {type(exc).__name__}: {exc}")
        finally:
            metrics_registry.delivery_latency.labels(self._pipeline_id).observe(
                time.perf_counter() - t0
            )

        outcome = classify_status(response.status_code)
        if not outcome.ok:
            body = response.text[:200]
            outcome = DeliveryOutcome(outcome.kind, outcome.status_code, f"{outcome.detail}: {body}")
        return outcome
