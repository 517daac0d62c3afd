"""Service facade consumed by the HTTP layer."""

from __future__ import annotations

import asyncio
import binascii
import logging
from base64 import b64decode
from datetime import datetime
from typing import Any

import httpx

from wabridge.client.event_pipeline import EventPipeline
from wabridge.client.lifecycle import ConnectionManager
from wabridge.client.session import ProtocolSession, SessionFactory, message_id_of
from wabridge.core.errors import NotConnectedError, ValidationError
from wabridge.core.events import Event, EventType, format_timestamp, parse_timestamp
from wabridge.defaults.config import ServiceConfig
from wabridge.infra.auth_store import CredentialStore
from wabridge.infra.journal import EventJournal
from wabridge.infra.webhook import WebhookDispatcher

logger = logging.getLogger(__name__)


def parse_date_input(value: Any, key: str) -> datetime | None:
    """Parse an optional ISO-8601 query value; blank means absent."""
    if value is None or value == "":
        return None
    try:
        return parse_timestamp(str(value))
    except ValueError as exc:
        raise ValidationError(f"Invalid {key}. Use a valid ISO date string.") from exc


def normalize_target(target: Any) -> str:
    if not target or not isinstance(target, str) or not target.strip():
        raise ValidationError("target is required and must be a WhatsApp JID string.")
    return target.strip()


def _require_string(value: Any, message: str) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError(message)
    return value


def normalize_poll_options(poll_options: Any) -> list[str]:
    if not isinstance(poll_options, list) or len(poll_options) < 2:
        raise ValidationError("pollOptions is required and must be an array with at least 2 options.")
    options = [str(option).strip() for option in poll_options]
    options = [option for option in options if option]
    if len(options) < 2:
        raise ValidationError("pollOptions must contain at least 2 non-empty options.")
    return options


class WhatsAppService:
    """Composes journal, webhook dispatcher and lifecycle manager."""

    def __init__(
        self,
        config: ServiceConfig,
        session_factory: SessionFactory,
        *,
        journal: EventJournal | None = None,
        dispatcher: WebhookDispatcher | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.config = config
        self.credentials = CredentialStore(config.auth_dir)
        self.credentials.ensure()
        self.journal = journal or EventJournal(config.events_log_path)
        self.webhook = dispatcher or WebhookDispatcher(
            config.webhook_url,
            timeout_s=config.webhook_timeout_s,
            max_retries=config.webhook_max_retries,
            retry_base_s=config.webhook_retry_base_s,
            retry_max_s=config.webhook_retry_max_s,
            jitter_s=config.backoff_jitter_s,
            client=http_client,
        )
        self.pipeline = EventPipeline(save_fn=self._save_event, emit_fn=self._emit_event)
        self._event_guard = asyncio.Lock()
        self.manager = ConnectionManager(
            self.credentials,
            session_factory,
            self.push_event,
            reconnect_base_s=config.reconnect_base_s,
            reconnect_max_s=config.reconnect_max_s,
            jitter_s=config.backoff_jitter_s,
        )

    async def _save_event(self, event: Event) -> None:
        await asyncio.to_thread(self.journal.append, event)

    async def _emit_event(self, event: Event) -> None:
        self.webhook.enqueue(event)

    async def push_event(self, event_type: EventType, payload: dict[str, Any]) -> Event:
        event = Event.create(event_type, payload)
        # keeps journal order and webhook enqueue order identical
        async with self._event_guard:
            await self.pipeline.process(event)
        return event

    async def start(self, force_new_login: bool = False) -> None:
        await self.manager.connect(force_new_login)
        logger.info("whatsapp service initialized")

    async def stop(self) -> None:
        await self.manager.stop()
        logger.info("whatsapp service stopped")

    async def reset_auth(self) -> None:
        await self.stop()
        await self.start(force_new_login=True)

    async def aclose(self) -> None:
        await self.manager.stop()
        await self.webhook.aclose()

    def get_state(self) -> dict[str, Any]:
        state = self.manager.snapshot().to_dict()
        state["webhook_queue_size"] = self.webhook.queue_size
        return state

    async def query_events(self, start_date: Any, end_date: Any) -> dict[str, Any]:
        start = parse_date_input(start_date, "start_date")
        end = parse_date_input(end_date, "end_date")
        if start is None or end is None:
            raise ValidationError("Both start_date and end_date are required query params.")
        if start > end:
            raise ValidationError("start_date must be less than or equal to end_date.")
        events = await asyncio.to_thread(self.journal.query, start, end)
        return {
            "count": len(events),
            "start_date": format_timestamp(start),
            "end_date": format_timestamp(end),
            "events": [event.to_dict() for event in events],
        }

    def ensure_connected(self) -> ProtocolSession:
        session = self.manager.connected_session()
        if session is None:
            raise NotConnectedError(
                "WhatsApp is not connected. Authenticate first and wait for connection.open."
            )
        return session

    async def send_text(self, target: Any, message: Any) -> dict[str, Any]:
        jid = normalize_target(target)
        _require_string(message, "message is required and must be a string.")
        session = self.ensure_connected()

        sent = await session.send_message(jid, {"text": message})
        message_id = message_id_of(sent)
        await self.push_event(EventType.SEND_TEXT, {"jid": jid, "text": message, "message_id": message_id})
        return {"jid": jid, "message_id": message_id, "sent": sent}

    async def send_media(self, target: Any, base64: Any, filename: Any, mimetype: Any) -> dict[str, Any]:
        jid = normalize_target(target)
        _require_string(base64, "base64 is required and must be a base64 string.")
        _require_string(filename, "filename is required and must be a string.")
        _require_string(mimetype, "mimetype is required and must be a string.")
        try:
            document = b64decode(base64)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("base64 is required and must be a base64 string.") from exc
        session = self.ensure_connected()

        sent = await session.send_message(
            jid,
            {"document": document, "file_name": filename, "mimetype": mimetype},
        )
        message_id = message_id_of(sent)
        await self.push_event(
            EventType.SEND_MEDIA,
            {"jid": jid, "file_name": filename, "mimetype": mimetype, "message_id": message_id},
        )
        return {"jid": jid, "file_name": filename, "mimetype": mimetype, "message_id": message_id, "sent": sent}

    async def send_poll(self, target: Any, poll_text: Any, poll_options: Any) -> dict[str, Any]:
        jid = normalize_target(target)
        _require_string(poll_text, "pollText is required and must be a string.")
        options = normalize_poll_options(poll_options)
        session = self.ensure_connected()

        sent = await session.send_message(
            jid,
            {"poll": {"name": poll_text, "values": options, "selectable_count": 1}},
        )
        message_id = message_id_of(sent)
        await self.push_event(
            EventType.SEND_POLL,
            {"jid": jid, "poll_text": poll_text, "options": options, "message_id": message_id},
        )
        return {"jid": jid, "poll_text": poll_text, "options": options, "message_id": message_id, "sent": sent}
