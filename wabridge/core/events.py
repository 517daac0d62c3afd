"""Event records shared by the journal, the dispatcher and protocol sessions."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


class EventType(str, Enum):
    CONNECTION_OPEN = "connection.open"
    CONNECTION_CLOSE = "connection.close"
    AUTH_QR_UPDATED = "auth.qr.updated"
    MESSAGES_UPSERT = "messages.upsert"
    MESSAGES_UPDATE = "messages.update"
    MESSAGE_RECEIPT_UPDATE = "message-receipt.update"
    SEND_TEXT = "send.text"
    SEND_MEDIA = "send.media"
    SEND_POLL = "send.poll"


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(tz=timezone.utc))


def format_timestamp(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    utc = value.astimezone(timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(raw: str) -> datetime:
    """Parse an ISO-8601 instant; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(raw.strip())
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class Event:
    """One journaled lifecycle or message event."""

    event_type: EventType
    payload: dict[str, Any]
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        object.__setattr__(self, "event_type", EventType(self.event_type))

    @classmethod
    def create(cls, event_type: EventType | str, payload: dict[str, Any] | None = None) -> Event:
        return cls(event_type=EventType(event_type), payload=copy.deepcopy(payload or {}))

    @property
    def instant(self) -> datetime:
        return parse_timestamp(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "eventType": self.event_type.value,
            "payload": self.payload,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Event:
        timestamp = data["timestamp"]
        if not isinstance(timestamp, str):
            raise ValueError("timestamp must be a string")
        parse_timestamp(timestamp)
        payload = data.get("payload")
        if payload is None:
            payload = {}
        return cls(event_type=EventType(data["eventType"]), payload=payload, timestamp=timestamp)


@dataclass
class ConnectionEvent:
    status: str  # "connecting", "open", "close"
    qr: str | None = None
    reason: Any | None = None


@dataclass
class MessagesUpsertEvent:
    messages: list[Any]
    type: str  # "append", "notify"


@dataclass
class MessageUpdateEvent:
    updates: list[dict]


@dataclass
class ReceiptUpdateEvent:
    receipts: list[dict]
