"""Error taxonomy for Cachewire.

Storage errors never leave the cache or metadata layers; they are caught
there and converted to each operation's degraded return value. The API
layer raises ValidationError and NotFoundError, which the exception
handlers in cachewire.api.errors render as JSON.
"""

from __future__ import annotations


class CachewireError(Exception):
    """Base class for all Cachewire errors."""


class TransientStorageError(CachewireError):
    """The cache engine or metadata store could not be reached or timed out."""

    def __init__(self, operation: str, key: str | None = None, cause: BaseException | None = None):
        self.operation = operation
        self.key = key
        self.cause = cause
        target = f" {key}" if key else ""
        reason = f": {cause!r}" if cause is not None else ""
        super().__init__(f"{operation}{target} failed{reason}")


class ValidationError(CachewireError):
    """Malformed administrative request, rejected before touching storage."""


class NotFoundError(CachewireError):
    """Administrative lookup for a key or record that does not exist."""

    def __init__(self, resource_type: str, identifier: str):
        self.resource_type = resource_type
        self.identifier = identifier
        super().__init__(f"{resource_type} '{identifier}' not found")


class SubscriberDeliveryError(CachewireError):
    """An event could not be pushed to one subscriber."""

    def __init__(self, subscriber_id: str, reason: str):
        self.subscriber_id = subscriber_id
        self.reason = reason
        super().__init__(f"Delivery to subscriber {subscriber_id} failed: {reason}")
