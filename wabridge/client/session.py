"""Contract between the lifecycle manager and a protocol session implementation."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from wabridge.core.events import (
    ConnectionEvent,
    MessagesUpsertEvent,
    MessageUpdateEvent,
    ReceiptUpdateEvent,
)
from wabridge.infra.auth_store import CredentialStore


class ProtocolSession(Protocol):
    """One socket-level session against the messaging network.

    Implementations report lifecycle changes through ``on_connection_update``
    (``connecting`` with a ``qr`` while awaiting login, ``open`` once
    authenticated, ``close`` with a ``reason`` carrying a ``status_code``).
    """

    on_connection_update: Callable[[ConnectionEvent], Awaitable[None]]
    on_messages_upsert: Callable[[MessagesUpsertEvent], Awaitable[None]]
    on_messages_update: Callable[[MessageUpdateEvent], Awaitable[None]]
    on_receipt_update: Callable[[ReceiptUpdateEvent], Awaitable[None]]

    @property
    def user(self) -> dict[str, Any] | None: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def send_message(self, jid: str, content: dict[str, Any]) -> dict[str, Any] | None: ...


SessionFactory = Callable[[CredentialStore], ProtocolSession]


def message_id_of(sent: Any) -> str | None:
    if not isinstance(sent, dict):
        return None
    key = sent.get("key")
    if isinstance(key, dict):
        msg_id = key.get("id")
        return msg_id if isinstance(msg_id, str) else None
    return None
