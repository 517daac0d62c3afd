"""Directory-backed multi-file credential store."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
from base64 import b64decode, b64encode
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

CREDS_FILE = "creds"
_BYTES_TAG = "__bytes__"


def fix_file_name(name: str) -> str:
    return name.replace("/", "__").replace(":", "-")


def _encode(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_TAG: b64encode(bytes(value)).decode("utf-8")}
    if isinstance(value, dict):
        return {key: _encode(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_encode(item) for item in value]
    return value


def _decode(value: Any) -> Any:
    if isinstance(value, dict):
        if set(value) == {_BYTES_TAG}:
            return b64decode(value[_BYTES_TAG].encode("utf-8"))
        return {key: _decode(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_decode(item) for item in value]
    return value


class CredentialStore:
    """One JSON file per credential key under a single directory.

    Protocol sessions persist whatever key material they need through
    :meth:`read` / :meth:`write`; the lifecycle manager only ever wipes the
    directory wholesale with :meth:`reset`.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = asyncio.Lock()

    def ensure(self) -> None:
        self.path.mkdir(parents=True, exist_ok=True)

    def file_for(self, name: str) -> Path:
        return self.path / f"{fix_file_name(name)}.json"

    def has_credentials(self) -> bool:
        return self.file_for(CREDS_FILE).exists()

    def list_entries(self) -> list[str]:
        if not self.path.exists():
            return []
        return sorted(entry.name for entry in self.path.iterdir())

    async def read(self, name: str) -> Any | None:
        target = self.file_for(name)
        if not target.exists():
            return None
        raw = await asyncio.to_thread(target.read_text, "utf-8")
        return _decode(json.loads(raw))

    async def write(self, name: str, data: Any) -> None:
        payload = json.dumps(_encode(data), separators=(",", ":"))
        async with self._lock:
            await asyncio.to_thread(self.ensure)
            await asyncio.to_thread(self.file_for(name).write_text, payload, "utf-8")

    async def remove(self, name: str) -> None:
        async with self._lock:
            await asyncio.to_thread(self.file_for(name).unlink, missing_ok=True)

    async def get_creds(self) -> dict[str, Any] | None:
        return await self.read(CREDS_FILE)

    async def save_creds(self, creds: dict[str, Any]) -> None:
        await self.write(CREDS_FILE, creds)

    def reset(self) -> int:
        """Delete every file and subdirectory under the store; returns the count removed."""
        self.ensure()
        removed = 0
        for entry in self.path.iterdir():
            if entry.is_dir() and not entry.is_symlink():
                shutil.rmtree(entry)
            else:
                entry.unlink()
            removed += 1
        logger.info("auth state reset completed", extra={"context": {"auth_dir": str(self.path), "removed": removed}})
        return removed
