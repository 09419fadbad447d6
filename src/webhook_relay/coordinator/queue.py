from __future__ import annotations

import asyncio
import itertools
import time
from collections import deque
from typing import Awaitable, Callable, Literal, Optional

from ..errors import QueueFullError
from ..models import PendingItem, Record
from .feedback import BackpressureLevel
from .types import BackpressureCallback

OverflowStrategy = Literal["block", "drop_oldest", "error"]
LevelCallback = Callable[[BackpressureLevel, int], Awaitable[None]]
ItemDropCallback = Callable[[PendingItem], Awaitable[None]]


class DeliveryQueue:
    """Bounded FIFO of pending records with peek-then-pop consumption.

    The consumer peeks the head, attempts delivery and only then pops it
    (``pop_head``) or leaves it in place (``release``). While peeked, the
    head is in flight and is never evicted by ``drop_oldest``.

    Watermarks: ``on_high`` fires once when size reaches the high watermark,
    ``on_low`` fires once when it falls back to the low watermark. Every
    level transition (OK/SOFT/HARD) is also reported to ``on_level``.
    """

    def __init__(
        self,
        capacity: int,
        high_watermark: int | None = None,
        low_watermark: int | None = None,
        *,
        overflow_strategy: OverflowStrategy = "block",
        on_high: Optional[BackpressureCallback] = None,
        on_low: Optional[BackpressureCallback] = None,
        on_level: Optional[LevelCallback] = None,
        drop_callback: Optional[ItemDropCallback] = None,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if overflow_strategy not in ("block", "drop_oldest", "error"):
            raise ValueError(f"unknown overflow strategy: {overflow_strategy}")

        self._capacity = capacity
        self._items: deque[PendingItem] = deque()
        self._seq = itertools.count(1)

        self._high_wm = (
            high_watermark if high_watermark is not None else max(1, int(0.8 * capacity))
        )
        self._low_wm = low_watermark if low_watermark is not None else int(0.5 * capacity)
        if self._low_wm > self._high_wm:
            raise ValueError("low_watermark must not exceed high_watermark")
        self._overflow = overflow_strategy
        self._on_high = on_high
        self._on_low = on_low
        self._on_level = on_level
        self._drop_cb = drop_callback

        self._in_flight: Optional[PendingItem] = None
        self._level = BackpressureLevel.OK
        self._high_fired = False  # avoid duplicate signals

        # one condition for not-empty / not-full / drained waiters
        self._changed = asyncio.Condition()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    @property
    def level(self) -> BackpressureLevel:
        return self._level

    @property
    def in_flight(self) -> Optional[PendingItem]:
        return self._in_flight

    @property
    def head(self) -> Optional[PendingItem]:
        return self._items[0] if self._items else None

    def snapshot(self) -> list[PendingItem]:
        """Copy of the pending items, head first."""
        return list(self._items)

    # ---------- producer side ----------

    async def put(self, record: Record) -> PendingItem:
        """Enqueue ``record`` according to the overflow strategy."""
        evicted: Optional[PendingItem] = None
        async with self._changed:
            if len(self._items) >= self._capacity:
                if self._overflow == "error":
                    raise QueueFullError(f"DeliveryQueue is full ({self._capacity})")
                if self._overflow == "block":
                    await self._changed.wait_for(lambda: len(self._items) < self._capacity)
                else:
                    evicted = self._evict_oldest()

            item = PendingItem(record=record, sequence=next(self._seq), enqueued_at=time.monotonic())
            self._items.append(item)
            self._changed.notify_all()
            signals = self._level_signals()

        if evicted is not None and self._drop_cb:
            await self._drop_cb(evicted)
        await self._fire(signals)
        return item

    def _evict_oldest(self) -> PendingItem:
        # the in-flight head stays; evict the next one
        index = 1 if self._in_flight is not None and self._items[0] is self._in_flight else 0
        if index >= len(self._items):
            raise QueueFullError("DeliveryQueue is full and its only item is in flight")
        evicted = self._items[index]
        del self._items[index]
        return evicted

    # ---------- consumer side ----------

    async def peek(self, timeout: float | None = None) -> PendingItem:
        """Wait for a head item and mark it in flight; it stays queued.

        Raises asyncio.TimeoutError if nothing arrives within ``timeout``.
        """

        async def _wait() -> PendingItem:
            async with self._changed:
                await self._changed.wait_for(lambda: len(self._items) > 0)
                self._in_flight = self._items[0]
                return self._in_flight

        if timeout is None:
            return await _wait()
        return await asyncio.wait_for(_wait(), timeout=timeout)

    async def pop_head(self, item: PendingItem) -> None:
        """Remove ``item`` from the head after delivery or drop."""
        async with self._changed:
            if not self._items or self._items[0] is not item:
                raise RuntimeError("pop_head called for an item that is not at the head")
            self._items.popleft()
            if self._in_flight is item:
                self._in_flight = None
            self._changed.notify_all()
            signals = self._level_signals()
        await self._fire(signals)

    def release(self, item: PendingItem) -> None:
        """Leave ``item`` at the head for another attempt."""
        if self._in_flight is item:
            self._in_flight = None

    async def wait_empty(self, timeout: float | None = None) -> None:
        async def _wait() -> None:
            async with self._changed:
                await self._changed.wait_for(lambda: len(self._items) == 0)

        if timeout is None:
            await _wait()
        else:
            await asyncio.wait_for(_wait(), timeout=timeout)

    # ---------- watermarks ----------

    def _level_signals(self) -> list[tuple[str, BackpressureLevel]]:
        """Update level state under the lock; return callbacks to fire after it."""
        size = len(self._items)
        signals: list[tuple[str, BackpressureLevel]] = []

        if not self._high_fired and size >= self._high_wm:
            self._high_fired = True
            signals.append(("high", BackpressureLevel.HARD))
        elif self._high_fired and size <= self._low_wm:
            self._high_fired = False
            signals.append(("low", BackpressureLevel.OK))

        if self._high_fired:
            new_level = BackpressureLevel.HARD
        elif size > self._low_wm:
            new_level = BackpressureLevel.SOFT
        else:
            new_level = BackpressureLevel.OK
        if new_level is not self._level:
            self._level = new_level
            signals.append(("level", new_level))
        return signals

    async def _fire(self, signals: list[tuple[str, BackpressureLevel]]) -> None:
        for kind, level in signals:
            if kind == "high" and self._on_high:
                await self._on_high()
            elif kind == "low" and self._on_low:
                await self._on_low()
            elif kind == "level" and self._on_level:
                await self._on_level(level, len(self._items))
