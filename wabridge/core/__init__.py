from .errors import (
    ConnectionError,
    DeliveryFailure,
    DisconnectReason,
    NotConnectedError,
    PersistenceFailure,
    ValidationError,
    WabridgeError,
)
from .events import Event, EventType

__all__ = [
    "WabridgeError",
    "ValidationError",
    "NotConnectedError",
    "DeliveryFailure",
    "PersistenceFailure",
    "ConnectionError",
    "DisconnectReason",
    "Event",
    "EventType",
]
