"""WhatsApp session bridge: lifecycle manager, event journal and webhook relay."""

__version__ = "0.1.0"

__all__ = [
    "WhatsAppService",
    "ServiceConfig",
    "config_from_env",
    "ConnectionManager",
    "ConnectionSnapshot",
    "Event",
    "EventType",
    "EventJournal",
    "WebhookDispatcher",
    "CredentialStore",
    "WabridgeError",
    "ValidationError",
    "NotConnectedError",
    "DisconnectReason",
]


def __getattr__(name: str) -> object:
    """Lazy exports so importing the package does not pull in httpx or qrcode."""
    if name == "WhatsAppService":
        from .service import WhatsAppService

        return WhatsAppService

    if name in {"ServiceConfig", "config_from_env"}:
        from .defaults.config import ServiceConfig, config_from_env

        return {"ServiceConfig": ServiceConfig, "config_from_env": config_from_env}[name]

    if name == "ConnectionManager":
        from .client.lifecycle import ConnectionManager

        return ConnectionManager

    if name in {"ConnectionSnapshot", "Event", "EventType"}:
        from .core.entities import ConnectionSnapshot
        from .core.events import Event, EventType

        return {"ConnectionSnapshot": ConnectionSnapshot, "Event": Event, "EventType": EventType}[name]

    if name == "EventJournal":
        from .infra.journal import EventJournal

        return EventJournal

    if name == "WebhookDispatcher":
        from .infra.webhook import WebhookDispatcher

        return WebhookDispatcher

    if name == "CredentialStore":
        from .infra.auth_store import CredentialStore

        return CredentialStore

    if name in {"WabridgeError", "ValidationError", "NotConnectedError", "DisconnectReason"}:
        from .core.errors import DisconnectReason, NotConnectedError, ValidationError, WabridgeError

        return {
            "WabridgeError": WabridgeError,
            "ValidationError": ValidationError,
            "NotConnectedError": NotConnectedError,
            "DisconnectReason": DisconnectReason,
        }[name]

    raise AttributeError(f"module 'wabridge' has no attribute {name!r}")
