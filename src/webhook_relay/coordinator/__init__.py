"""Delivery coordinator

Rate-limited queue -> single serial worker -> webhook pipeline with:
- DeliveryQueue (peek-then-pop, watermarks + overflow strategies)
- RetryPolicy with capped backoff and jitter
- DeliveryWorker enforcing the post-success inter-message interval
- Per-pipeline backpressure feedback bus
"""

from .types import BackpressureCallback, Deliverer, DropCallback, QueueFullError
from .policy import RetryPolicy
from .queue import DeliveryQueue, OverflowStrategy
from .worker import DeliveryWorker
from .feedback import BackpressureLevel, FeedbackBus, FeedbackEvent, FeedbackSubscriber

__all__ = [
    # types
    "BackpressureCallback",
    "Deliverer",
    "DropCallback",
    "QueueFullError",
    "OverflowStrategy",
    # policies
    "RetryPolicy",
    # runtime
    "DeliveryQueue",
    "DeliveryWorker",
    # feedback
    "BackpressureLevel",
    "FeedbackBus",
    "FeedbackEvent",
    "FeedbackSubscriber",
]
