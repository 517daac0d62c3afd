from __future__ import annotations

from collections.abc import Awaitable, Callable

from wabridge.core.events import Event


class EventPipeline:
    """Persists an event before handing it to downstream consumers."""

    def __init__(
        self,
        save_fn: Callable[[Event], Awaitable[None]],
        emit_fn: Callable[[Event], Awaitable[None]],
    ) -> None:
        self._save_fn = save_fn
        self._emit_fn = emit_fn

    async def process(self, event: Event) -> None:
        await self._save_fn(event)
        await self._emit_fn(event)
