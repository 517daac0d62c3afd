"""Connection lifecycle: login QR, open/close handling and scheduled reconnects."""

from __future__ import annotations

import asyncio
import copy
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from wabridge.core.entities import ConnectionPhase, ConnectionSnapshot
from wabridge.core.errors import disconnect_status_code, is_logged_out
from wabridge.core.events import (
    ConnectionEvent,
    EventType,
    MessagesUpsertEvent,
    MessageUpdateEvent,
    ReceiptUpdateEvent,
    utc_now_iso,
)
from wabridge.infra.auth_store import CredentialStore
from wabridge.utils.backoff import DEFAULT_JITTER_S, backoff_delay
from wabridge.utils.qr import qr_svg_data_url

from .session import ProtocolSession, SessionFactory

logger = logging.getLogger(__name__)

EmitFn = Callable[[EventType, dict[str, Any]], Awaitable[None]]


@dataclass(slots=True)
class _ConnectionState:
    phase: ConnectionPhase = ConnectionPhase.DISCONNECTED
    connected: bool = False
    qr: str | None = None
    qr_image_data_url: str | None = None
    qr_updated_at: str | None = None
    reconnect_attempts: int = 0
    last_disconnect_reason: int | str | None = None
    me: dict[str, Any] | None = None

    def clear_qr(self) -> None:
        self.qr = None
        self.qr_image_data_url = None
        self.qr_updated_at = None


class ConnectionManager:
    """Owns the protocol session and the connection state machine.

    disconnected -> connecting -> awaiting_login -> connected, and back to
    disconnected on any close. Every close except a remote logout schedules a
    reconnect with capped exponential backoff; ``stop()`` and forced resets
    cancel a pending one.
    """

    def __init__(
        self,
        credentials: CredentialStore,
        session_factory: SessionFactory,
        emit: EmitFn,
        *,
        reconnect_base_s: float = 1.5,
        reconnect_max_s: float = 30.0,
        jitter_s: float = DEFAULT_JITTER_S,
        qr_renderer: Callable[[str], str] = qr_svg_data_url,
        rng: random.Random | None = None,
    ) -> None:
        self.credentials = credentials
        self._session_factory = session_factory
        self._emit = emit
        self.reconnect_base_s = reconnect_base_s
        self.reconnect_max_s = reconnect_max_s
        self.jitter_s = jitter_s
        self._qr_renderer = qr_renderer
        self._rng = rng

        self._state = _ConnectionState()
        self._session: ProtocolSession | None = None
        self._reconnect_handle: asyncio.TimerHandle | None = None
        self._reconnect_task: asyncio.Task[None] | None = None
        self._connect_guard = asyncio.Lock()

    @property
    def session(self) -> ProtocolSession | None:
        return self._session

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def connected_session(self) -> ProtocolSession | None:
        if self._session is None or not self._state.connected:
            return None
        return self._session

    def snapshot(self) -> ConnectionSnapshot:
        state = self._state
        return ConnectionSnapshot(
            phase=state.phase,
            connected=state.connected,
            qr=state.qr,
            qr_image_data_url=state.qr_image_data_url,
            qr_updated_at=state.qr_updated_at,
            reconnect_attempts=state.reconnect_attempts,
            last_disconnect_reason=state.last_disconnect_reason,
            me=copy.deepcopy(state.me),
        )

    async def connect(self, force_new_login: bool = False) -> None:
        async with self._connect_guard:
            # a stale timer firing later would open a second session on the same credentials
            self._cancel_reconnect()
            await self._detach_session()

            if force_new_login:
                await asyncio.to_thread(self.credentials.reset)
            else:
                await asyncio.to_thread(self.credentials.ensure)

            session = self._session_factory(self.credentials)
            self._bind(session)
            self._session = session
            self._state.connected = False
            self._state.phase = ConnectionPhase.CONNECTING
            logger.info(
                "opening session",
                extra={"context": {"force_new_login": force_new_login, "has_credentials": self.credentials.has_credentials()}},
            )
            try:
                await session.connect()
            except Exception:
                if self._session is session:
                    self._session = None
                    self._state.connected = False
                    self._state.phase = ConnectionPhase.DISCONNECTED
                raise

    async def stop(self) -> None:
        self._cancel_reconnect()
        async with self._connect_guard:
            await self._detach_session()
            self._state.connected = False
            self._state.phase = ConnectionPhase.DISCONNECTED
            self._state.clear_qr()
        logger.info("session stopped")

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        task = self._reconnect_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._reconnect_task = None

    async def _detach_session(self) -> None:
        session = self._session
        self._session = None
        if session is None:
            return
        try:
            await session.disconnect()
        except Exception as exc:
            logger.warning("failed to close previous session: %s", exc)

    def _bind(self, session: ProtocolSession) -> None:
        async def _on_connection_update(event: ConnectionEvent) -> None:
            if session is self._session:
                await self._handle_connection_update(session, event)

        async def _on_messages_upsert(event: MessagesUpsertEvent) -> None:
            if session is self._session:
                await self._handle_messages_upsert(event)

        async def _on_messages_update(event: MessageUpdateEvent) -> None:
            if session is self._session:
                await self._handle_messages_update(event)

        async def _on_receipt_update(event: ReceiptUpdateEvent) -> None:
            if session is self._session:
                await self._handle_receipt_update(event)

        session.on_connection_update = _on_connection_update
        session.on_messages_upsert = _on_messages_upsert
        session.on_messages_update = _on_messages_update
        session.on_receipt_update = _on_receipt_update

    async def _handle_connection_update(self, session: ProtocolSession, event: ConnectionEvent) -> None:
        if event.qr:
            await self._handle_qr(event.qr)
        if event.status == "open":
            await self._handle_open(session)
        elif event.status == "close":
            await self._handle_close(event.reason)

    async def _handle_qr(self, qr: str) -> None:
        try:
            image = self._qr_renderer(qr)
        except Exception as exc:
            logger.warning("failed to render QR code: %s", exc)
            image = None
        state = self._state
        state.qr = qr
        state.qr_image_data_url = image
        state.qr_updated_at = utc_now_iso()
        state.phase = ConnectionPhase.AWAITING_LOGIN
        logger.info("QR updated, scan required")
        await self._publish(EventType.AUTH_QR_UPDATED, {"qr_updated_at": state.qr_updated_at})

    async def _handle_open(self, session: ProtocolSession) -> None:
        state = self._state
        state.connected = True
        state.phase = ConnectionPhase.CONNECTED
        state.reconnect_attempts = 0
        state.last_disconnect_reason = None
        state.clear_qr()
        me = session.user
        state.me = copy.deepcopy(me) if me else None
        logger.info("whatsapp connected", extra={"context": {"me": state.me}})
        await self._publish(EventType.CONNECTION_OPEN, {"me": state.me})

    async def _handle_close(self, reason: Any) -> None:
        state = self._state
        self._session = None
        state.connected = False
        state.phase = ConnectionPhase.DISCONNECTED
        status_code = disconnect_status_code(reason)
        state.last_disconnect_reason = status_code if status_code is not None else "unknown"
        should_reconnect = not is_logged_out(status_code)
        logger.warning(
            "whatsapp disconnected",
            extra={
                "context": {
                    "status_code": status_code,
                    "should_reconnect": should_reconnect,
                    "reason": str(reason) if reason is not None else None,
                }
            },
        )
        await self._publish(
            EventType.CONNECTION_CLOSE,
            {"status_code": status_code, "should_reconnect": should_reconnect},
        )
        if should_reconnect:
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            return
        self._state.reconnect_attempts += 1
        delay = backoff_delay(
            self._state.reconnect_attempts,
            self.reconnect_base_s,
            self.reconnect_max_s,
            jitter_s=self.jitter_s,
            rng=self._rng,
        )
        logger.info(
            "scheduling reconnect",
            extra={"context": {"reconnect_attempts": self._state.reconnect_attempts, "delay_s": round(delay, 3)}},
        )
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._fire_reconnect)

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        loop = asyncio.get_running_loop()
        self._reconnect_task = loop.create_task(self._reconnect(), name="wabridge-reconnect")

    async def _reconnect(self) -> None:
        try:
            await self.connect(False)
        except Exception as exc:
            logger.warning("reconnect attempt failed: %s", exc)
            self._state.last_disconnect_reason = disconnect_status_code(exc) or "unknown"
            if self._session is None and self._reconnect_handle is None:
                self._schedule_reconnect()

    async def _handle_messages_upsert(self, event: MessagesUpsertEvent) -> None:
        for msg in event.messages or []:
            if not isinstance(msg, dict):
                continue
            key = msg.get("key") or {}
            record = {
                "type": event.type,
                "key": key,
                "message_timestamp": msg.get("message_timestamp"),
                "push_name": msg.get("push_name"),
                "message": msg.get("message"),
            }
            logger.info(
                "incoming message event",
                extra={
                    "context": {
                        "remote_jid": key.get("remote_jid"),
                        "id": key.get("id"),
                        "from_me": key.get("from_me"),
                        "type": event.type,
                    }
                },
            )
            await self._publish(EventType.MESSAGES_UPSERT, record)

    async def _handle_messages_update(self, event: MessageUpdateEvent) -> None:
        for update in event.updates or []:
            logger.info("message status update", extra={"context": {"key": update.get("key")}})
            await self._publish(EventType.MESSAGES_UPDATE, dict(update))

    async def _handle_receipt_update(self, event: ReceiptUpdateEvent) -> None:
        for receipt in event.receipts or []:
            logger.info("delivery receipt update", extra={"context": {"key": receipt.get("key")}})
            await self._publish(EventType.MESSAGE_RECEIPT_UPDATE, dict(receipt))

    async def _publish(self, event_type: EventType, payload: dict[str, Any]) -> None:
        try:
            await self._emit(event_type, payload)
        except Exception:
            logger.exception("failed to publish %s event", event_type.value)
