from __future__ import annotations

from typing import Awaitable, Callable, Protocol

from ..errors import QueueFullError
from ..models import DeliveryOutcome, Endpoint, PendingItem

BackpressureCallback = Callable[[], Awaitable[None]]
DropCallback = Callable[[PendingItem, str], Awaitable[None]]


class Deliverer(Protocol):
    """Anything that can attempt one webhook delivery (WebhookClient or a test double)."""

    async def send(self, endpoint: Endpoint, payload: str) -> DeliveryOutcome: ...


__all__ = ["BackpressureCallback", "DropCallback", "Deliverer", "QueueFullError"]
