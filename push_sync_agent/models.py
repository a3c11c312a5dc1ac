"""Data models for push messages and realtime status events."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class MessageStatus(str, Enum):
    """Status values the backend is known to send. Others pass through as strings."""
    SCHEDULED = "Scheduled"
    SENT = "Sent"
    FAILED = "Failed"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO8601 timestamp into an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None for missing or
    unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Could not parse timestamp {value!r}")
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class Message:
    """A push message as known to this client."""
    id: str                              # backend _id, opaque and stable
    title: str
    body: str
    status: str
    scheduled_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    category: Optional[str] = None
    priority: str = "normal"
    health_category: Optional[str] = None

    @property
    def effective_timestamp(self) -> Optional[datetime]:
        """When the message was delivered, falling back to its last update."""
        return self.delivered_at or self.updated_at

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Message":
        """
        Build a Message from a backend JSON object.

        Raises:
            ValueError: If the object has no identity.
        """
        identity = data.get("_id") or data.get("id")
        if not identity:
            raise ValueError(f"Message without _id: {data!r}")
        return cls(
            id=str(identity),
            title=data.get("title") or "",
            body=data.get("content") or data.get("body") or "",
            status=str(data.get("status") or ""),
            scheduled_at=parse_timestamp(data.get("scheduledDateTime") or data.get("createdAt")),
            delivered_at=parse_timestamp(data.get("deliveredAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            category=data.get("category"),
            priority=data.get("priority") or "normal",
            health_category=data.get("healthCategory"),
        )


@dataclass(frozen=True)
class StatusEvent:
    """Incremental status change pushed over the realtime connection."""
    message_id: str
    status: str
    delivered_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "StatusEvent":
        """
        Build a StatusEvent from a `statusUpdate` payload.

        Raises:
            ValueError: If the payload is not an object with messageId and status.
        """
        if not isinstance(payload, dict):
            raise ValueError(f"Status event must be an object, got {type(payload).__name__}")
        message_id = payload.get("messageId")
        status = payload.get("status")
        if not message_id or not status:
            raise ValueError(f"Status event missing messageId or status: {payload!r}")
        return cls(
            message_id=str(message_id),
            status=str(status),
            delivered_at=parse_timestamp(payload.get("deliveredAt")),
        )


@dataclass
class DeviceRegistration:
    """Result of registering this client with the backend."""
    device_id: Optional[str]
    push_token: str
