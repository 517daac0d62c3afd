"""Append-only JSONL event journal."""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Iterator
from datetime import datetime, timezone
from pathlib import Path

from wabridge.core.errors import PersistenceFailure
from wabridge.core.events import Event
from wabridge.utils.serialization import json_default

logger = logging.getLogger(__name__)


def serialize_event(event: Event) -> str:
    return json.dumps(event.to_dict(), separators=(",", ":"), default=json_default)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class EventJournal:
    """One JSON record per line; writes never raise, reads skip damaged rows."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, event: Event) -> bool:
        try:
            line = serialize_event(event) + "\n"
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line)
        except (OSError, TypeError, ValueError) as exc:
            logger.error(
                "failed to append event log",
                extra={"context": {"path": str(self.path), "event_type": event.event_type.value, "error": str(exc)}},
            )
            return False
        return True

    def query(self, start: datetime, end: datetime) -> list[Event]:
        start, end = _as_utc(start), _as_utc(end)
        if start > end:
            return []
        return [event for event in self._scan() if start <= event.instant <= end]

    def read_all(self) -> list[Event]:
        return list(self._scan())

    def _scan(self) -> Iterator[Event]:
        try:
            with self._lock:
                if not self.path.exists():
                    return
                raw = self.path.read_bytes()
        except OSError as exc:
            raise PersistenceFailure(f"failed to read event log {self.path}: {exc}") from exc

        for row in raw.split(b"\n"):
            if not row.strip():
                continue
            event = self._parse_row(row)
            if event is not None:
                yield event

    @staticmethod
    def _parse_row(row: bytes) -> Event | None:
        try:
            data = json.loads(row.decode("utf-8"))
            if not isinstance(data, dict):
                return None
            return Event.from_dict(data)
        except (ValueError, KeyError, TypeError):
            # one damaged row must not hide the rest of the history
            return None
