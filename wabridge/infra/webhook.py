"""Ordered single-flight webhook delivery with capped exponential backoff."""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import httpx

from wabridge.core.errors import DeliveryFailure
from wabridge.core.events import Event, utc_now_iso
from wabridge.infra.journal import serialize_event
from wabridge.utils.backoff import DEFAULT_JITTER_S, backoff_delay

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


@dataclass
class DeliveryItem:
    url: str
    event: Event
    attempt: int = 0
    enqueued_at: str = field(default_factory=utc_now_iso)


class WebhookDispatcher:
    """Delivers every enqueued event to one destination, in enqueue order.

    A single worker task drains the queue. The head item is retried until it
    succeeds or exceeds ``max_retries``; nothing behind it is attempted in the
    meantime, so the destination observes events in the order they were
    enqueued.
    """

    def __init__(
        self,
        url: str | None,
        *,
        timeout_s: float = 8.0,
        max_retries: int = 8,
        retry_base_s: float = 1.0,
        retry_max_s: float = 30.0,
        jitter_s: float = DEFAULT_JITTER_S,
        client: httpx.AsyncClient | None = None,
        sleep: SleepFn = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.url = url or ""
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.retry_base_s = retry_base_s
        self.retry_max_s = retry_max_s
        self.jitter_s = jitter_s
        self._client = client
        self._owns_client = client is None
        self._sleep = sleep
        self._rng = rng
        self._queue: deque[DeliveryItem] = deque()
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._running

    def enqueue(self, event: Event) -> None:
        if not self.url:
            return
        self._queue.append(DeliveryItem(url=self.url, event=event))
        if self._running:
            return
        self._running = True
        self._task = asyncio.get_running_loop().create_task(self._run(), name="wabridge-webhook-worker")

    async def join(self) -> None:
        """Wait until the current worker has drained the queue."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    async def aclose(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._running = False
        self._task = None
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient()
        return self._client

    async def _post(self, item: DeliveryItem, body: bytes) -> None:
        try:
            # httpx timeouts are per phase; the deadline bounds the whole exchange
            async with asyncio.timeout(self.timeout_s):
                response = await self._http().post(
                    item.url,
                    content=body,
                    headers={
                        "content-type": "application/json",
                        "x-request-id": str(uuid.uuid4()),
                    },
                    timeout=self.timeout_s,
                )
        except TimeoutError as exc:
            raise DeliveryFailure(f"Webhook request exceeded {self.timeout_s}s") from exc
        except Exception as exc:
            raise DeliveryFailure(f"Webhook request failed: {exc!r}") from exc

        if not response.is_success:
            raise DeliveryFailure(
                f"Webhook responded with {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )

    async def _run(self) -> None:
        try:
            while self._queue:
                item = self._queue[0]
                try:
                    body = serialize_event(item.event).encode("utf-8")
                except (TypeError, ValueError) as exc:
                    logger.error(
                        "webhook dropped unserializable event",
                        extra={"context": {"event_type": item.event.event_type.value, "error": str(exc)}},
                    )
                    self._queue.popleft()
                    continue
                try:
                    await self._post(item, body)
                except Exception as exc:
                    item.attempt += 1
                    if item.attempt > self.max_retries:
                        logger.error(
                            "webhook dropped after max retries",
                            extra={"context": {"event_type": item.event.event_type.value, "error": str(exc)}},
                        )
                        self._queue.popleft()
                        continue

                    delay = backoff_delay(
                        item.attempt,
                        self.retry_base_s,
                        self.retry_max_s,
                        jitter_s=self.jitter_s,
                        rng=self._rng,
                    )
                    logger.warning(
                        "webhook failed, retrying",
                        extra={
                            "context": {
                                "attempt": item.attempt,
                                "delay_s": round(delay, 3),
                                "event_type": item.event.event_type.value,
                                "error": str(exc),
                            }
                        },
                    )
                    await self._sleep(delay)
                    continue
                self._queue.popleft()
        finally:
            self._running = False
