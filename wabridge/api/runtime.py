from __future__ import annotations

import asyncio
import atexit
import contextlib
import logging
import threading
from collections.abc import Callable
from typing import Any

from wabridge.service import WhatsAppService
from wabridge.utils.serialization import to_jsonable

logger = logging.getLogger(__name__)


class ServiceRuntime:
    """Runs the async service on a private loop thread for the sync HTTP layer."""

    def __init__(self, service_builder: Callable[[], WhatsAppService], call_timeout_s: float = 60.0) -> None:
        self.call_timeout_s = call_timeout_s
        self._loop = asyncio.new_event_loop()
        self._started = threading.Event()
        self._thread = threading.Thread(target=self._run_loop, name="wabridge-service-loop", daemon=True)
        self._thread.start()
        self._started.wait(timeout=2.0)
        self._closed = False

        # the service owns asyncio primitives, so build it on the loop thread
        self.service: WhatsAppService = self._run_coro_sync(self._build(service_builder))

        atexit.register(self.close)

    @staticmethod
    async def _build(service_builder: Callable[[], WhatsAppService]) -> WhatsAppService:
        return service_builder()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._started.set()
        self._loop.run_forever()

    def _run_coro_sync(self, coro: Any) -> Any:
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return fut.result(timeout=self.call_timeout_s)

    def start(self, force_new_login: bool = False) -> None:
        self._run_coro_sync(self.service.start(force_new_login=force_new_login))

    def stop(self) -> None:
        self._run_coro_sync(self.service.stop())

    def reset_auth(self) -> None:
        self._run_coro_sync(self.service.reset_auth())

    def state(self) -> dict[str, Any]:
        async def _state() -> dict[str, Any]:
            return self.service.get_state()

        return to_jsonable(self._run_coro_sync(_state()))

    def query_events(self, start_date: Any, end_date: Any) -> dict[str, Any]:
        return self._run_coro_sync(self.service.query_events(start_date, end_date))

    def send_text(self, target: Any, message: Any) -> dict[str, Any]:
        return to_jsonable(self._run_coro_sync(self.service.send_text(target, message)))

    def send_media(self, target: Any, base64: Any, filename: Any, mimetype: Any) -> dict[str, Any]:
        result = self._run_coro_sync(self.service.send_media(target, base64, filename, mimetype))
        return to_jsonable(result)

    def send_poll(self, target: Any, poll_text: Any, poll_options: Any) -> dict[str, Any]:
        return to_jsonable(self._run_coro_sync(self.service.send_poll(target, poll_text, poll_options)))

    def close(self) -> None:
        if self._closed or not self._loop.is_running():
            return
        self._closed = True
        try:
            self._run_coro_sync(self.service.aclose())
        except Exception as exc:
            logger.warning("service shutdown failed: %s", exc)
        self._loop.call_soon_threadsafe(self._loop.stop)
        with contextlib.suppress(RuntimeError):
            self._thread.join(timeout=5.0)
