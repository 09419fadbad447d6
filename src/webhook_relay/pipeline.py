"""
Pipeline controller: the host-facing surface of a relay.

Wires the endpoint resolver, payload encoder, delivery queue, serial worker
and webhook client together and exposes start / on_record / stop.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Mapping, Optional

from loguru import logger

from .client import WebhookClient
from .config_source import ConfigSource
from .coordinator import (
    BackpressureCallback,
    BackpressureLevel,
    Deliverer,
    DeliveryQueue,
    DeliveryWorker,
    DropCallback,
    FeedbackBus,
    FeedbackEvent,
    OverflowStrategy,
    RetryPolicy,
)
from .encoder import EncodingMode, FieldMapping, PayloadEncoder
from .endpoint import EndpointResolver, redact_url
from .errors import ConfigurationError, PipelineStateError
from .metrics import metrics_registry
from .models import Endpoint, PendingItem, Record, RecordSchema
from .settings import RelayRuntimeSettings, get_settings


class PipelineState(str, Enum):
    CREATED = "created"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineHealth:
    pipeline_id: str
    state: str
    worker_alive: bool
    queue_size: int
    capacity: int
    backpressure: str
    delivered: int
    dropped: int
    endpoint_url: Optional[str]
    mode: Optional[str]
    last_success_at: Optional[float]


class PipelineController:
    """Relays records to a single webhook endpoint, one per interval.

    Usage:
        schema = schema_from_mapping({"message": "string"})
        async with PipelineController(schema, webhook_url="https://hooks.example.com/...") as relay:
            await relay.on_record({"message": "deploy finished"})

    Constructor arguments left as None fall back to RelayRuntimeSettings
    (``RELAY_*`` environment variables).

    Args:
        schema: Inbound record schema, fixed for the life of the pipeline
        webhook_url: Fallback destination when the config snapshot has none
        config_source: Optional configuration collaborator
        config_name: Snapshot name to pull from ``config_source``
        field_mapping: Structured-mode field mapping (config overrides win)
        username, icon_url, icon_emoji: Display defaults for every message
        client: Custom deliverer; defaults to a WebhookClient
        on_drop: Awaited with (item, reason) for every dropped record
        feedback: Bus for backpressure events; the pipeline owns a fresh one by default
        pipeline_id: Label for logs, metrics and feedback events
    """

    def __init__(
        self,
        schema: RecordSchema,
        *,
        webhook_url: Optional[str] = None,
        config_source: Optional[ConfigSource] = None,
        config_name: Optional[str] = None,
        field_mapping: FieldMapping | Mapping[str, Optional[str]] | None = None,
        username: Optional[str] = None,
        icon_url: Optional[str] = None,
        icon_emoji: Optional[str] = None,
        capacity: Optional[int] = None,
        high_watermark: Optional[int] = None,
        low_watermark: Optional[int] = None,
        overflow_strategy: Optional[OverflowStrategy] = None,
        interval_sec: Optional[float] = None,
        retry_policy: Optional[RetryPolicy] = None,
        request_timeout: Optional[float] = None,
        client: Optional[Deliverer] = None,
        on_backpressure_high: Optional[BackpressureCallback] = None,
        on_backpressure_low: Optional[BackpressureCallback] = None,
        on_drop: Optional[DropCallback] = None,
        feedback: Optional[FeedbackBus] = None,
        settings: Optional[RelayRuntimeSettings] = None,
        metrics_poll_sec: Optional[float] = None,
        pipeline_id: str = "relay",
    ):
        cfg = settings or get_settings()
        self.pipeline_id = pipeline_id
        self._schema = list(schema)
        self._field_mapping = field_mapping
        self._feedback = feedback or FeedbackBus(pipeline_id)
        self._metrics_poll = metrics_poll_sec or cfg.relay_metrics_poll_sec
        self._state = PipelineState.CREATED
        self._encoder: Optional[PayloadEncoder] = None
        self._metrics_task: Optional[asyncio.Task] = None

        self._resolver = EndpointResolver(
            webhook_url,
            config_source=config_source,
            config_name=config_name,
            username=username,
            icon_url=icon_url,
            icon_emoji=icon_emoji,
            pipeline_id=pipeline_id,
        )

        self._owns_client = client is None
        self._client: Deliverer = client or WebhookClient(
            timeout=request_timeout or cfg.relay_request_timeout_sec,
            keepalive_expiry=cfg.relay_keepalive_expiry_sec,
            max_connections=cfg.relay_max_connections,
            pipeline_id=pipeline_id,
        )

        self._queue = DeliveryQueue(
            capacity=capacity or cfg.relay_capacity,
            high_watermark=high_watermark if high_watermark is not None else cfg.relay_high_watermark,
            low_watermark=low_watermark if low_watermark is not None else cfg.relay_low_watermark,
            overflow_strategy=overflow_strategy or cfg.relay_overflow_strategy,
            on_high=on_backpressure_high,
            on_low=on_backpressure_low,
            on_level=self._publish_level,
            drop_callback=self._on_evicted,
        )
        self._on_drop = on_drop

        self._worker = DeliveryWorker(
            queue=self._queue,
            client=self._client,
            resolver=self._resolver,
            encoder=self._current_encoder,
            interval_sec=interval_sec if interval_sec is not None else cfg.relay_interval_sec,
            retry_policy=retry_policy or RetryPolicy.from_settings(cfg),
            on_drop=on_drop,
            pipeline_id=pipeline_id,
        )
        self._evicted = 0

    # ---------- accessors ----------

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def queue(self) -> DeliveryQueue:
        return self._queue

    @property
    def resolver(self) -> EndpointResolver:
        return self._resolver

    @property
    def worker(self) -> DeliveryWorker:
        return self._worker

    @property
    def feedback(self) -> FeedbackBus:
        return self._feedback

    @property
    def encoder(self) -> PayloadEncoder:
        if self._encoder is None:
            raise PipelineStateError("Pipeline has not been started")
        return self._encoder

    @property
    def mode(self) -> Optional[EncodingMode]:
        return self._encoder.mode if self._encoder else None

    # ---------- lifecycle ----------

    async def start(self) -> None:
        """Resolve the endpoint, pick the encoding mode and start the worker.

        Raises ConfigurationError (pipeline never becomes ready) when no
        destination is resolvable or the schema cannot be encoded.
        """
        if self._state is not PipelineState.CREATED:
            raise PipelineStateError(f"Cannot start a pipeline in state {self._state.value}")

        try:
            endpoint = self._resolver.refresh(trigger="startup")
            self._encoder = PayloadEncoder.for_schema(
                self._schema, self._field_mapping, self._resolver.snapshot
            )
        except ConfigurationError as exc:
            self._state = PipelineState.FAILED
            logger.error(f"[{self.pipeline_id}] Pipeline failed to start: {exc}")
            raise

        self._resolver.add_listener(self._on_config_refresh)
        if isinstance(self._client, WebhookClient):
            await self._client.start()
        self._worker.start()
        self._metrics_task = asyncio.create_task(self._metrics_loop())
        metrics_registry.queue_capacity.labels(self.pipeline_id).set(self._queue.capacity)
        self._state = PipelineState.RUNNING
        logger.success(
            f"[{self.pipeline_id}] Pipeline started "
            f"(mode={self._encoder.mode.value}, capacity={self._queue.capacity}, "
            f"endpoint={redact_url(endpoint.url)})"
        )

    async def on_record(self, record: Record) -> PendingItem:
        """Enqueue one record; never waits on network I/O.

        Under the ``block`` overflow strategy this waits for queue space;
        under ``error`` it raises QueueFullError.
        """
        if self._state is not PipelineState.RUNNING:
            raise PipelineStateError(f"Pipeline is {self._state.value}, not accepting records")
        return await self._queue.put(record)

    async def on_records(self, records: Iterable[Record]) -> None:
        for record in records:
            await self.on_record(record)

    async def stop(self, drain: bool = False, timeout: Optional[float] = None) -> None:
        """Stop the worker after its in-flight attempt and release the client.

        Args:
            drain: Wait for the queue to empty before halting
            timeout: Bound for the drain wait and for the worker shutdown
        """
        if self._state in (PipelineState.STOPPED, PipelineState.STOPPING):
            return
        if self._state is not PipelineState.RUNNING:
            self._state = PipelineState.STOPPED
            await self._close_client()
            return

        self._state = PipelineState.STOPPING
        if drain and self._worker.alive:
            try:
                await self._queue.wait_empty(timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    f"[{self.pipeline_id}] Drain timed out with {self._queue.size} record(s) pending"
                )

        try:
            await self._worker.stop(timeout=timeout)
        except Exception as exc:
            logger.error(f"[{self.pipeline_id}] Worker ended with error: {type(exc).__name__}: {exc}")

        if self._metrics_task:
            self._metrics_task.cancel()
            try:
                await self._metrics_task
            except asyncio.CancelledError:
                pass
            self._metrics_task = None
        metrics_registry.worker_alive.labels(self.pipeline_id).set(0)

        await self._close_client()
        self._state = PipelineState.STOPPED
        if self._queue.size:
            logger.warning(
                f"[{self.pipeline_id}] Pipeline stopped with {self._queue.size} undelivered record(s)"
            )
        else:
            logger.info(f"[{self.pipeline_id}] Pipeline stopped")

    async def __aenter__(self) -> "PipelineController":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # ---------- host hooks ----------

    def refresh_endpoint(self) -> Endpoint:
        """Re-pull configuration now (e.g., on a host change notification)."""
        return self._resolver.refresh(trigger="host")

    def health(self) -> PipelineHealth:
        endpoint = self._resolver.cached
        return PipelineHealth(
            pipeline_id=self.pipeline_id,
            state=self._state.value,
            worker_alive=self._worker.alive,
            queue_size=self._queue.size,
            capacity=self._queue.capacity,
            backpressure=self._queue.level.value,
            delivered=self._worker.delivered,
            dropped=self._worker.dropped + self._evicted,
            endpoint_url=endpoint.url if endpoint else None,
            mode=self._encoder.mode.value if self._encoder else None,
            last_success_at=self._worker.last_success_at,
        )

    # ---------- internals ----------

    def _current_encoder(self) -> PayloadEncoder:
        return self.encoder

    def _on_config_refresh(self, snapshot: Mapping[str, str]) -> None:
        if self._encoder is None:
            return
        try:
            encoder = self._encoder.with_overrides(snapshot, self._field_mapping)
        except ConfigurationError as exc:
            logger.error(f"[{self.pipeline_id}] Ignoring field mapping update: {exc}")
            return
        if encoder is not self._encoder:
            logger.info(f"[{self.pipeline_id}] Field mapping updated: {encoder.mapping}")
            self._encoder = encoder

    async def _publish_level(self, level: BackpressureLevel, size: int) -> None:
        reason = {
            BackpressureLevel.HARD: "high_watermark",
            BackpressureLevel.SOFT: "above_low_watermark",
            BackpressureLevel.OK: "drained",
        }[level]
        head = self._queue.head
        endpoint = self._resolver.cached
        await self._feedback.publish(
            FeedbackEvent(
                pipeline_id=self.pipeline_id,
                level=level,
                queue_size=size,
                capacity=self._queue.capacity,
                reason=reason,
                head_attempts=head.attempts if head is not None else 0,
                endpoint=redact_url(endpoint.url) if endpoint else None,
            )
        )

    async def _on_evicted(self, item: PendingItem) -> None:
        self._evicted += 1
        metrics_registry.dropped_total.labels(self.pipeline_id, "overflow").inc()
        logger.error(f"[{self.pipeline_id}] Dropped #{item.sequence} (overflow, queue full)")
        if self._on_drop:
            try:
                await self._on_drop(item, "overflow")
            except Exception as exc:
                logger.warning(f"[{self.pipeline_id}] on_drop callback failed: {exc}")

    async def _metrics_loop(self) -> None:
        while True:
            metrics_registry.queue_depth.labels(self.pipeline_id).set(self._queue.size)
            metrics_registry.worker_alive.labels(self.pipeline_id).set(1 if self._worker.alive else 0)
            await asyncio.sleep(self._metrics_poll)

    async def _close_client(self) -> None:
        if self._owns_client and isinstance(self._client, WebhookClient):
            await self._client.aclose()
