from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union


class ConnectionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AWAITING_LOGIN = "awaiting_login"
    CONNECTED = "connected"


@dataclass(frozen=True)
class ConnectionSnapshot:
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    connected: bool = False
    qr: Optional[str] = None
    qr_image_data_url: Optional[str] = None
    qr_updated_at: Optional[str] = None
    reconnect_attempts: int = 0
    last_disconnect_reason: Optional[Union[int, str]] = None
    me: Optional[dict[str, Any]] = None

    @property
    def has_qr(self) -> bool:
        return bool(self.qr)

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "connected": self.connected,
            "qr": self.qr,
            "qr_image_data_url": self.qr_image_data_url,
            "qr_updated_at": self.qr_updated_at,
            "reconnect_attempts": self.reconnect_attempts,
            "last_disconnect_reason": self.last_disconnect_reason,
            "me": dict(self.me) if self.me else None,
        }
