"""
Custom exceptions for the webhook relay.

Only start-up failures propagate to the host. Per-item failures are handled
inside the delivery worker and surface through logs and metrics.
"""


class RelayError(Exception):
    """Base error for the webhook relay."""

    pass


class ConfigurationError(RelayError):
    """No resolvable destination, or an inbound schema that cannot be encoded."""

    pass


class PayloadError(RelayError):
    """A single record cannot be turned into a delivery payload (permanent)."""

    pass


class QueueFullError(RelayError):
    """Raised by the delivery queue under the ``error`` overflow strategy."""

    pass


class PipelineStateError(RelayError):
    """Operation not valid in the pipeline's current lifecycle state."""

    pass
