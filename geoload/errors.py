"""Error taxonomy for the ingestion pipeline.

Record-level rejections are not exceptions; they travel as
``RecordFailure`` entries inside a ``Delivered`` outcome.
"""

from __future__ import annotations

from typing import Optional


class GeoloadError(Exception):
    """Base class for all geoload errors."""


class ConfigError(GeoloadError):
    """Invalid configuration, conflicting options or missing credentials."""


class ValidationFailure(GeoloadError):
    """The input batch is not valid GeoJSON. Aborts the whole run."""


class QueueClosed(GeoloadError):
    """A task was enqueued after drain() was requested."""


class TransportError(GeoloadError):
    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RetryableTransportFailure(TransportError):
    """5xx or connection failure; retried with a fixed budget."""


class OversizedPayload(TransportError):
    """413 from the store; resolved by bisecting the batch."""


class FatalTransportFailure(TransportError):
    """Any other non-success status, or a payload that cannot be encoded."""
