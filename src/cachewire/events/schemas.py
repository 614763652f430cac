"""Invalidation event schemas.

Events tell connected clients that some of their locally cached data is
stale. They are transient: built on publish, fanned out, never persisted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

import orjson


class EventType(str, Enum):
    """Kind of invalidation pushed to subscribers."""

    INVALIDATE = "invalidate"
    INVALIDATE_TYPE = "invalidate_type"
    UPDATE = "update"
    DELETE = "delete"
    HEARTBEAT = "heartbeat"


@dataclass(frozen=True, slots=True)
class InvalidationEvent:
    """One notification for one tenant.

    Heartbeats carry no tenant or pattern; they go to every subscriber.
    """

    type: EventType
    pattern: str | None = None
    tenant_id: str | None = None
    metadata: dict[str, Any] | None = None
    event_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    origin: str | None = None  # instance_id of the publishing process

    @classmethod
    def heartbeat(cls) -> "InvalidationEvent":
        return cls(type=EventType.HEARTBEAT)

    def to_message(self) -> dict[str, Any]:
        """Payload sent to clients over the stream."""
        if self.type is EventType.HEARTBEAT:
            return {"type": self.type.value, "timestamp": self.timestamp.isoformat()}

        message: dict[str, Any] = {
            "type": self.type.value,
            "pattern": self.pattern,
            "tenantId": self.tenant_id,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata is not None:
            message["metadata"] = self.metadata
        return message

    def to_sse(self) -> str:
        """Render as a server-sent event frame."""
        return f"data: {orjson.dumps(self.to_message()).decode()}\n\n"

    def to_bytes(self) -> bytes:
        """Serialize for the cross-instance relay."""
        return orjson.dumps(
            {
                "type": self.type.value,
                "pattern": self.pattern,
                "tenant_id": self.tenant_id,
                "metadata": self.metadata,
                "event_id": self.event_id,
                "timestamp": self.timestamp.isoformat(),
                "origin": self.origin,
            }
        )

    @classmethod
    def from_bytes(cls, data: bytes | str) -> "InvalidationEvent":
        """Deserialize a relayed event."""
        parsed = orjson.loads(data)
        return cls(
            type=EventType(parsed["type"]),
            pattern=parsed.get("pattern"),
            tenant_id=parsed.get("tenant_id"),
            metadata=parsed.get("metadata"),
            event_id=parsed["event_id"],
            timestamp=datetime.fromisoformat(parsed["timestamp"]),
            origin=parsed.get("origin"),
        )
