"""
Pytest configuration and fixtures for webhook-relay.

Provides cross-platform event loop configuration, a scripted deliverer and
small async helpers.
"""

import asyncio
import sys
import time
from dataclasses import dataclass

import pytest

from webhook_relay import (
    DeliveryOutcome,
    InMemoryConfigSource,
    RelayRuntimeSettings,
    RetryPolicy,
)

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


WEBHOOK_URL = "https://hooks.example.com/services/T000/B000/first"
ROTATED_URL = "https://hooks.example.com/services/T000/B000/second"


@dataclass
class Call:
    url: str
    payload: str
    started: float
    finished: float
    outcome: DeliveryOutcome


class ScriptedClient:
    """Deliverer double: returns queued outcomes in order, then ``default``.

    ``responder`` (url, payload) -> DeliveryOutcome takes precedence when given.
    """

    def __init__(self, outcomes=None, default=None, responder=None, delay: float = 0.0):
        self.outcomes = list(outcomes or [])
        self.default = default or DeliveryOutcome.success()
        self.responder = responder
        self.delay = delay
        self.calls: list[Call] = []

    async def send(self, endpoint, payload):
        started = time.monotonic()
        await asyncio.sleep(self.delay)
        if self.responder is not None:
            outcome = self.responder(endpoint.url, payload)
        elif self.outcomes:
            outcome = self.outcomes.pop(0)
        else:
            outcome = self.default
        self.calls.append(Call(endpoint.url, payload, started, time.monotonic(), outcome))
        return outcome

    @property
    def payloads(self) -> list[str]:
        return [c.payload for c in self.calls]


@pytest.fixture
def webhook_url():
    return WEBHOOK_URL


@pytest.fixture
def rotated_url():
    return ROTATED_URL


@pytest.fixture
def make_client():
    """Factory for ScriptedClient instances."""
    return ScriptedClient


@pytest.fixture
def config_source(webhook_url):
    return InMemoryConfigSource({"alerts": {"webhook_url": webhook_url}})


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=0, initial_backoff_ms=1, max_backoff_ms=5, jitter=False)


@pytest.fixture
def fast_settings():
    """Settings tuned for quick tests (no env lookup surprises)."""
    return RelayRuntimeSettings(
        relay_capacity=100,
        relay_interval_sec=0.01,
        relay_request_timeout_sec=1.0,
        relay_max_attempts=0,
        relay_initial_backoff_ms=1,
        relay_max_backoff_ms=5,
        relay_backoff_jitter=False,
        relay_metrics_poll_sec=0.05,
    )


@pytest.fixture
def wait_until():
    """Poll ``predicate`` until true or fail after ``timeout`` seconds."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.005):
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("condition not met within timeout")
            await asyncio.sleep(interval)

    return _wait
