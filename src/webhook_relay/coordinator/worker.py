"""
Serial delivery worker.

Exactly one worker task drives a DeliveryQueue, so at most one webhook POST
is in flight per pipeline. The head item is only popped after a successful
delivery (or a definitive drop); everything behind it waits.
"""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Optional

from loguru import logger

from ..encoder import PayloadEncoder
from ..endpoint import EndpointResolver
from ..errors import ConfigurationError, PayloadError
from ..metrics import metrics_registry
from ..models import DeliveryOutcome, Endpoint, OutcomeKind, PendingItem
from .policy import RetryPolicy
from .queue import DeliveryQueue
from .types import Deliverer, DropCallback


class DeliveryWorker:
    """Owns the queue's processing loop.

    Per-item failures (encoding, HTTP, transport, a raising deliverer) are
    turned into outcomes; they never end the task.

    Args:
        queue: Queue to drain
        client: Performs one POST attempt and classifies it
        resolver: Supplies the current endpoint; refreshed on "not found"
        encoder: Zero-arg callable returning the encoder to use for the next item
        interval_sec: Pause after each successful delivery (remote rate limit)
        retry_policy: Backoff and max attempts for retryable outcomes
        on_drop: Awaited with (item, reason) when an item is dropped
        idle_poll_sec: How often an idle worker re-checks for stop
        pipeline_id: Label for logs and metrics
    """

    def __init__(
        self,
        *,
        queue: DeliveryQueue,
        client: Deliverer,
        resolver: EndpointResolver,
        encoder: Callable[[], PayloadEncoder],
        interval_sec: float = 1.0,
        retry_policy: Optional[RetryPolicy] = None,
        on_drop: Optional[DropCallback] = None,
        idle_poll_sec: float = 0.1,
        pipeline_id: str = "relay",
    ):
        self._q = queue
        self._client = client
        self._resolver = resolver
        self._encoder = encoder
        self._interval = interval_sec
        self._retry = retry_policy or RetryPolicy()
        self._on_drop = on_drop
        self._idle_poll = idle_poll_sec
        self._pipeline_id = pipeline_id

        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

        self.delivered = 0
        self.dropped = 0
        self.attempts = 0
        self.last_success_at: Optional[float] = None

    @property
    def alive(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.alive:
            return
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=f"relay-worker-{self._pipeline_id}")

    async def stop(self, timeout: float | None = None) -> None:
        """Halt after the in-flight attempt (if any) completes.

        Pauses are interrupted immediately. If ``timeout`` elapses first the
        task is cancelled.
        """
        self._stopping.set()
        if self._task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self._pipeline_id}] Worker did not stop within {timeout}s; cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass

    # ---------- loop ----------

    async def _run(self) -> None:
        logger.debug(f"[{self._pipeline_id}] Delivery worker started")
        try:
            while not self._stopping.is_set():
                try:
                    item = await self._q.peek(timeout=self._idle_poll)
                except asyncio.TimeoutError:
                    continue
                await self.process(item)
        except Exception:
            logger.exception(f"[{self._pipeline_id}] Delivery worker crashed")
            raise
        finally:
            logger.debug(
                f"[{self._pipeline_id}] Delivery worker stopped "
                f"(delivered={self.delivered}, dropped={self.dropped})"
            )

    async def process(self, item: PendingItem) -> OutcomeKind:
        """Run one delivery attempt for the head item and apply the outcome."""
        try:
            endpoint = self._current_endpoint()
        except ConfigurationError as exc:
            # nothing resolvable yet; the item is not charged an attempt
            logger.error(f"[{self._pipeline_id}] No endpoint for #{item.sequence}: {exc}")
            self._q.release(item)
            await self._pause(self._retry.next_backoff_ms(item.attempts + 1) / 1000.0)
            return OutcomeKind.RETRYABLE

        outcome = await self._attempt(item, endpoint)
        item.last_outcome = outcome
        metrics_registry.deliveries_total.labels(self._pipeline_id, outcome.kind.value).inc()

        if outcome.kind is OutcomeKind.SUCCESS:
            await self._q.pop_head(item)
            self.delivered += 1
            self.last_success_at = time.time()
            logger.debug(
                f"[{self._pipeline_id}] Delivered #{item.sequence} after {item.attempts} attempt(s)"
            )
            await self._pause(self._interval)

        elif outcome.kind is OutcomeKind.PERMANENT:
            await self._drop(item, "permanent", outcome)

        elif outcome.kind is OutcomeKind.ENDPOINT_INVALID:
            logger.warning(
                f"[{self._pipeline_id}] Endpoint reported not found for #{item.sequence}; refreshing"
            )
            refreshed = await self._refresh_endpoint(endpoint)
            if refreshed.url != endpoint.url:
                # stale URL corrected; retry right away
                self._q.release(item)
            else:
                await self._retry_later(item, outcome)

        else:
            logger.warning(
                f"[{self._pipeline_id}] Delivery of #{item.sequence} failed "
                f"(attempt {item.attempts}): {outcome.detail or outcome.status_code}"
            )
            await self._retry_later(item, outcome)

        return outcome.kind

    # ---------- helpers ----------

    def _current_endpoint(self) -> Endpoint:
        return self._resolver.current()

    async def _attempt(self, item: PendingItem, endpoint: Endpoint) -> DeliveryOutcome:
        try:
            payload = self._encoder().encode(item.record, endpoint)
        except PayloadError as exc:
            return DeliveryOutcome.permanent(str(exc))
        except Exception as exc:
            return DeliveryOutcome.permanent(f"encoding failed: {type(exc).__name__}: {exc}")

        item.attempts += 1
        self.attempts += 1
        try:
            return await self._client.send(endpoint, payload)
        except Exception as exc:
            logger.exception(f"[{self._pipeline_id}] Deliverer raised for #{item.sequence}")
            return DeliveryOutcome.retryable(None, f"deliverer error: {type(exc).__name__}: {exc}")

    async def _refresh_endpoint(self, stale: Endpoint) -> Endpoint:
        self._resolver.invalidate()
        try:
            return await asyncio.to_thread(self._resolver.refresh, "endpoint_invalid")
        except ConfigurationError as exc:
            logger.error(f"[{self._pipeline_id}] Endpoint refresh failed: {exc}")
            return stale

    async def _retry_later(self, item: PendingItem, outcome: DeliveryOutcome) -> None:
        if self._retry.exhausted(item.attempts):
            await self._drop(item, "max_attempts", outcome)
            return
        self._q.release(item)
        delay_ms = self._retry.next_backoff_ms(item.attempts)
        logger.debug(f"[{self._pipeline_id}] Retrying #{item.sequence} in {delay_ms}ms")
        await self._pause(delay_ms / 1000.0)

    async def _drop(self, item: PendingItem, reason: str, outcome: DeliveryOutcome) -> None:
        await self._q.pop_head(item)
        self.dropped += 1
        metrics_registry.dropped_total.labels(self._pipeline_id, reason).inc()
        logger.error(
            f"[{self._pipeline_id}] Dropped #{item.sequence} ({reason}) after "
            f"{item.attempts} attempt(s): {outcome.detail or outcome.status_code}"
        )
        if self._on_drop:
            try:
                await self._on_drop(item, reason)
            except Exception as exc:
                logger.warning(f"[{self._pipeline_id}] on_drop callback failed: {exc}")

    async def _pause(self, seconds: float) -> None:
        """Sleep that ends early when stop is requested."""
        if seconds <= 0 or self._stopping.is_set():
            return
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass
