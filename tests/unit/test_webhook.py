import asyncio
import json
import random

import httpx

from wabridge.core.events import Event, EventType
from wabridge.infra.webhook import WebhookDispatcher


class _ZeroRandom(random.Random):
    def uniform(self, a: float, b: float) -> float:
        return 0.0


def _event(n: int) -> Event:
    return Event.create(EventType.MESSAGES_UPSERT, {"n": n})


def _dispatcher(handler, delays: list[float], **kwargs) -> WebhookDispatcher:
    async def _record_sleep(delay: float) -> None:
        delays.append(delay)

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    options = {"max_retries": 8, "retry_base_s": 1.0, "retry_max_s": 4.0, "jitter_s": 0.0}
    options.update(kwargs)
    return WebhookDispatcher(
        "https://hooks.example.test/wa",
        client=client,
        sleep=_record_sleep,
        rng=_ZeroRandom(),
        **options,
    )


def test_first_success_delivers_once_with_request_id() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    async def _case() -> WebhookDispatcher:
        delays: list[float] = []
        dispatcher = _dispatcher(handler, delays)
        event = _event(1)
        dispatcher.enqueue(event)
        await dispatcher.join()
        assert delays == []
        await dispatcher._client.aclose()
        return dispatcher

    dispatcher = asyncio.run(_case())
    assert dispatcher.queue_size == 0
    assert dispatcher.is_running is False
    assert len(requests) == 1
    request = requests[0]
    assert request.method == "POST"
    assert request.headers["content-type"] == "application/json"
    assert request.headers["x-request-id"]
    body = json.loads(request.content)
    assert body["eventType"] == "messages.upsert"
    assert body["payload"] == {"n": 1}


def test_request_ids_are_unique_per_attempt() -> None:
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.headers["x-request-id"])
        return httpx.Response(500 if len(seen) < 3 else 204)

    async def _case() -> None:
        dispatcher = _dispatcher(handler, [])
        dispatcher.enqueue(_event(1))
        await dispatcher.join()

    asyncio.run(_case())
    assert len(seen) == 3
    assert len(set(seen)) == 3


def test_failures_retry_head_item_with_capped_backoff() -> None:
    calls: list[int] = []
    queue_sizes: list[int] = []
    holder: dict[str, WebhookDispatcher] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content)["payload"]["n"])
        queue_sizes.append(holder["dispatcher"].queue_size)
        return httpx.Response(503 if len(calls) <= 4 else 200)

    delays: list[float] = []

    async def _case() -> None:
        dispatcher = _dispatcher(handler, delays)
        holder["dispatcher"] = dispatcher
        dispatcher.enqueue(_event(1))
        await dispatcher.join()

    asyncio.run(_case())
    assert calls == [1, 1, 1, 1, 1]
    assert queue_sizes == [1, 1, 1, 1, 1]
    assert delays == [1.0, 2.0, 4.0, 4.0]
    assert delays == sorted(delays)
    assert holder["dispatcher"].queue_size == 0


def test_always_failing_item_is_dropped_and_next_item_still_delivered() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        n = json.loads(request.content)["payload"]["n"]
        calls.append(n)
        return httpx.Response(500 if n == 1 else 200)

    delays: list[float] = []

    async def _case() -> WebhookDispatcher:
        dispatcher = _dispatcher(handler, delays, max_retries=3)
        dispatcher.enqueue(_event(1))
        dispatcher.enqueue(_event(2))
        await dispatcher.join()
        return dispatcher

    dispatcher = asyncio.run(_case())
    assert calls == [1, 1, 1, 1, 2]
    assert len(delays) == 3
    assert dispatcher.queue_size == 0


def test_delivery_order_matches_enqueue_order() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content)["payload"]["n"])
        return httpx.Response(500 if len(calls) <= 2 else 200)

    async def _case() -> None:
        dispatcher = _dispatcher(handler, [])
        for n in (1, 2, 3):
            dispatcher.enqueue(_event(n))
        await dispatcher.join()

    asyncio.run(_case())
    assert calls == [1, 1, 1, 2, 3]


def test_transport_errors_count_as_failed_attempts() -> None:
    attempts = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise httpx.ConnectError("connection refused", request=request)
        if attempts["count"] == 2:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200)

    delays: list[float] = []

    async def _case() -> None:
        dispatcher = _dispatcher(handler, delays)
        dispatcher.enqueue(_event(1))
        await dispatcher.join()

    asyncio.run(_case())
    assert attempts["count"] == 3
    assert delays == [1.0, 2.0]


def test_enqueue_without_url_is_a_noop() -> None:
    async def _case() -> WebhookDispatcher:
        dispatcher = WebhookDispatcher("")
        dispatcher.enqueue(_event(1))
        await dispatcher.join()
        await dispatcher.aclose()
        return dispatcher

    dispatcher = asyncio.run(_case())
    assert dispatcher.enabled is False
    assert dispatcher.queue_size == 0
    assert dispatcher.is_running is False


def test_enqueue_while_running_reuses_single_worker() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content)["payload"]["n"])
        return httpx.Response(200)

    async def _case() -> None:
        dispatcher = _dispatcher(handler, [])
        dispatcher.enqueue(_event(1))
        first_task = dispatcher._task
        dispatcher.enqueue(_event(2))
        assert dispatcher._task is first_task
        assert dispatcher.queue_size == 2
        await dispatcher.join()

    asyncio.run(_case())
    assert calls == [1, 2]


def test_aclose_cancels_pending_retries() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    async def _case() -> WebhookDispatcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        dispatcher = WebhookDispatcher(
            "https://hooks.example.test/wa",
            retry_base_s=60.0,
            retry_max_s=60.0,
            jitter_s=0.0,
            client=client,
        )
        dispatcher.enqueue(_event(1))
        await asyncio.sleep(0.05)
        await dispatcher.aclose()
        await client.aclose()
        return dispatcher

    dispatcher = asyncio.run(_case())
    assert dispatcher.is_running is False
    assert dispatcher.queue_size == 1


def test_unserializable_event_is_dropped_without_jamming_queue() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content)["payload"]["n"])
        return httpx.Response(200)

    delays: list[float] = []

    async def _case() -> WebhookDispatcher:
        dispatcher = _dispatcher(handler, delays)
        dispatcher.enqueue(Event.create(EventType.MESSAGES_UPSERT, {"m": {(1, 2): "x"}}))
        dispatcher.enqueue(_event(2))
        await dispatcher.join()
        return dispatcher

    dispatcher = asyncio.run(_case())
    assert calls == [2]
    assert delays == []
    assert dispatcher.queue_size == 0
    assert dispatcher.is_running is False


def test_unexpected_attempt_error_counts_as_failure() -> None:
    calls: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content)["payload"]["n"])
        return httpx.Response(200)

    delays: list[float] = []

    async def _case() -> None:
        dispatcher = _dispatcher(handler, delays)
        real_post = dispatcher._post
        failures = {"left": 1}

        async def _flaky_post(item, body):
            if failures["left"]:
                failures["left"] -= 1
                raise RuntimeError("unexpected")
            await real_post(item, body)

        dispatcher._post = _flaky_post
        dispatcher.enqueue(_event(1))
        await dispatcher.join()

    asyncio.run(_case())
    assert calls == [1]
    assert delays == [1.0]


def test_timeout_bounds_whole_request_including_slow_body() -> None:
    attempts = {"count": 0}

    async def _trickle():
        for _ in range(20):
            await asyncio.sleep(0.05)
            yield b"x"

    async def handler(request: httpx.Request) -> httpx.Response:
        attempts["count"] += 1
        return httpx.Response(200, content=_trickle())

    delays: list[float] = []

    async def _case() -> float:
        dispatcher = _dispatcher(handler, delays, timeout_s=0.2, max_retries=1)
        loop = asyncio.get_running_loop()
        started = loop.time()
        dispatcher.enqueue(_event(1))
        await dispatcher.join()
        return loop.time() - started

    elapsed = asyncio.run(_case())
    assert attempts["count"] == 2
    assert delays == [1.0]
    assert elapsed < 0.9
