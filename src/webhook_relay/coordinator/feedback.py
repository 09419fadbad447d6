"""
Backpressure feedback for a relay pipeline.

The queue drains at most one record per interval, so any sustained inbound
rate above that grows it. Each pipeline owns a FeedbackBus and publishes a
FeedbackEvent whenever its queue changes backpressure level. Events carry
the state a producer needs to decide whether to slow down or shed load: how
full the queue is, how many attempts the head record has burned (a stuck
head means the remote is failing, not merely busy) and which endpoint is in
use.
"""

from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional

from loguru import logger


class BackpressureLevel(str, Enum):
    """Queue pressure as seen by producers."""

    OK = "ok"  # at or below low watermark
    SOFT = "soft"  # between watermarks
    HARD = "hard"  # at/above high watermark


@dataclass(frozen=True)
class FeedbackEvent:
    """Backpressure level change of one pipeline.

    Attributes:
        pipeline_id: Pipeline that emitted the event
        level: New backpressure level
        queue_size: Records waiting for delivery, head included
        capacity: Queue capacity
        reason: "high_watermark", "above_low_watermark" or "drained"
        head_attempts: Delivery attempts spent on the current head record
        endpoint: Redacted URL of the endpoint in use
        emitted_at: Wall-clock timestamp
    """

    pipeline_id: str
    level: BackpressureLevel
    queue_size: int
    capacity: int
    reason: Optional[str] = None
    head_attempts: int = 0
    endpoint: Optional[str] = None
    emitted_at: float = field(default_factory=time.time)

    @property
    def utilization(self) -> float:
        return self.queue_size / self.capacity if self.capacity > 0 else 0.0

    @property
    def head_stuck(self) -> bool:
        """The head has failed at least once; the backlog is not just pacing."""
        return self.head_attempts > 0

    def to_dict(self) -> dict:
        return {
            "pipeline_id": self.pipeline_id,
            "level": self.level.value,
            "queue_size": self.queue_size,
            "capacity": self.capacity,
            "utilization": self.utilization,
            "reason": self.reason,
            "head_attempts": self.head_attempts,
            "endpoint": self.endpoint,
            "emitted_at": self.emitted_at,
        }


FeedbackSubscriber = Callable[[FeedbackEvent], Awaitable[None]]


class FeedbackBus:
    """Fan-out of one pipeline's FeedbackEvents.

    ``subscribe`` returns a callable that removes the subscription.
    Subscribers run concurrently per event; a failing subscriber is logged
    and never affects the others or the publisher. The most recent events
    are kept for ``history``.
    """

    def __init__(self, pipeline_id: str = "relay", *, history_size: int = 32):
        self.pipeline_id = pipeline_id
        self._subscribers: dict[int, FeedbackSubscriber] = {}
        self._tokens = itertools.count(1)
        self._history: deque[FeedbackEvent] = deque(maxlen=history_size)

    def subscribe(self, callback: FeedbackSubscriber) -> Callable[[], None]:
        token = next(self._tokens)
        self._subscribers[token] = callback

        def unsubscribe() -> None:
            self._subscribers.pop(token, None)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def last_event(self) -> Optional[FeedbackEvent]:
        return self._history[-1] if self._history else None

    def history(self) -> list[FeedbackEvent]:
        return list(self._history)

    async def publish(self, event: FeedbackEvent) -> None:
        self._history.append(event)
        subscribers = list(self._subscribers.values())
        logger.debug(
            f"[{self.pipeline_id}] Backpressure {event.level.value}: "
            f"queue={event.queue_size}/{event.capacity} head_attempts={event.head_attempts} "
            f"({len(subscribers)} subscriber(s))"
        )
        if not subscribers:
            return

        results = await asyncio.gather(
            *(callback(event) for callback in subscribers), return_exceptions=True
        )
        for result in results:
            if isinstance(result, Exception):
                logger.warning(
                    f"[{self.pipeline_id}] Feedback subscriber failed: "
                    f"{type(result).__name__}: {result}"
                )
