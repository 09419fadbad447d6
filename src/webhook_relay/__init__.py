"""
Webhook Relay

Rate-limited, fault-tolerant delivery of a record stream to a single
incoming-webhook endpoint (one accepted message per second), with live
endpoint rotation from an external configuration source.

Usage:
    from webhook_relay import PipelineController, InMemoryConfigSource, schema_from_mapping

    config = InMemoryConfigSource({"alerts": {"webhook_url": "https://hooks.example.com/..."}})
    relay = PipelineController(
        schema_from_mapping({"text": "string", "username": "string"}),
        config_source=config,
        config_name="alerts",
    )
    await relay.start()
    await relay.on_record({"text": "disk usage at 91%", "username": "monitor"})
    await relay.stop()
"""

from .client import WebhookClient, classify_status
from .config_source import ConfigSource, InMemoryConfigSource, JsonFileConfigSource
from .coordinator import (
    BackpressureLevel,
    DeliveryQueue,
    DeliveryWorker,
    FeedbackBus,
    FeedbackEvent,
    RetryPolicy,
)
from .encoder import EncodingMode, FieldMapping, PayloadEncoder, select_mode
from .endpoint import EndpointResolver
from .errors import (
    ConfigurationError,
    PayloadError,
    PipelineStateError,
    QueueFullError,
    RelayError,
)
from .models import (
    DeliveryOutcome,
    Endpoint,
    FieldSpec,
    FieldType,
    OutcomeKind,
    PendingItem,
    schema_from_mapping,
)
from .pipeline import PipelineController, PipelineHealth, PipelineState
from .settings import RelayRuntimeSettings, get_settings

__version__ = "1.0.0"
__all__ = [
    "PipelineController",
    "PipelineHealth",
    "PipelineState",
    "WebhookClient",
    "classify_status",
    "EndpointResolver",
    "ConfigSource",
    "InMemoryConfigSource",
    "JsonFileConfigSource",
    "PayloadEncoder",
    "EncodingMode",
    "FieldMapping",
    "select_mode",
    "DeliveryQueue",
    "DeliveryWorker",
    "RetryPolicy",
    "BackpressureLevel",
    "FeedbackBus",
    "FeedbackEvent",
    "Endpoint",
    "DeliveryOutcome",
    "OutcomeKind",
    "PendingItem",
    "FieldSpec",
    "FieldType",
    "schema_from_mapping",
    "RelayRuntimeSettings",
    "get_settings",
    "RelayError",
    "ConfigurationError",
    "PayloadError",
    "PipelineStateError",
    "QueueFullError",
]
