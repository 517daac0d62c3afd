from enum import IntEnum
from typing import Any, Optional


class WabridgeError(Exception):
    """Base exception for wabridge."""
    status_code: Optional[int] = None


class ValidationError(WabridgeError):
    """Raised when a caller sends missing or malformed input."""
    status_code = 400


class NotConnectedError(WabridgeError):
    """Raised when a send is attempted without an open session."""
    status_code = 503


class DeliveryFailure(WabridgeError):
    """Raised internally when a webhook attempt does not succeed."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceFailure(WabridgeError):
    """Raised when the event journal cannot be read or written."""
    pass


class ConnectionError(WabridgeError):
    """Raised by protocol sessions when there is a connection issue."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DisconnectReason(IntEnum):
    """Close codes reported with a session disconnect."""
    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = 401
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    TIMED_OUT = 408
    CONNECTION_ERROR = 429
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


def disconnect_status_code(reason: Any) -> Optional[int]:
    """Extract the numeric close code from a session close reason."""
    if isinstance(reason, bool):
        return None
    if isinstance(reason, int):
        return int(reason)
    status_code = getattr(reason, "status_code", None)
    if isinstance(status_code, int) and not isinstance(status_code, bool):
        return int(status_code)
    return None


def is_logged_out(status_code: Optional[int]) -> bool:
    return status_code == int(DisconnectReason.LOGGED_OUT)
