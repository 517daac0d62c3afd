"""Default service configuration and environment loading."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass

SERVICE_NAME = "wabridge"
AUTH_DIR_NAME = "auth"
EVENTS_LOG_NAME = "events.log"

DEFAULT_SERVICE_CONFIG = {
    "port": 3000,
    "data_dir": "data",
    "json_limit": "25mb",
    "webhook_url": "",
    "webhook_timeout_s": 8.0,
    "webhook_max_retries": 8,
    "webhook_retry_base_s": 1.0,
    "webhook_retry_max_s": 30.0,
    "reconnect_base_s": 1.5,
    "reconnect_max_s": 30.0,
    "backoff_jitter_s": 0.2,
    "log_level": "INFO",
}

_SIZE_RE = re.compile(r"^\s*(\d+)\s*(b|kb|mb|gb)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"b": 1, "kb": 1024, "mb": 1024**2, "gb": 1024**3}


@dataclass
class ServiceConfig:
    port: int = DEFAULT_SERVICE_CONFIG["port"]
    data_dir: str = DEFAULT_SERVICE_CONFIG["data_dir"]
    json_limit: str = DEFAULT_SERVICE_CONFIG["json_limit"]
    webhook_url: str = DEFAULT_SERVICE_CONFIG["webhook_url"]
    webhook_timeout_s: float = DEFAULT_SERVICE_CONFIG["webhook_timeout_s"]
    webhook_max_retries: int = DEFAULT_SERVICE_CONFIG["webhook_max_retries"]
    webhook_retry_base_s: float = DEFAULT_SERVICE_CONFIG["webhook_retry_base_s"]
    webhook_retry_max_s: float = DEFAULT_SERVICE_CONFIG["webhook_retry_max_s"]
    reconnect_base_s: float = DEFAULT_SERVICE_CONFIG["reconnect_base_s"]
    reconnect_max_s: float = DEFAULT_SERVICE_CONFIG["reconnect_max_s"]
    backoff_jitter_s: float = DEFAULT_SERVICE_CONFIG["backoff_jitter_s"]
    log_level: str = DEFAULT_SERVICE_CONFIG["log_level"]
    session_factory: str | None = None

    @property
    def auth_dir(self) -> str:
        return os.path.join(self.data_dir, AUTH_DIR_NAME)

    @property
    def events_log_path(self) -> str:
        return os.path.join(self.data_dir, EVENTS_LOG_NAME)

    @property
    def max_content_length(self) -> int:
        return parse_size(self.json_limit)


def parse_size(raw: str) -> int:
    """Parse sizes like ``25mb`` or ``512kb`` into bytes."""
    match = _SIZE_RE.match(raw or "")
    if not match:
        raise ValueError(f"Invalid size value: {raw!r}")
    unit = (match.group(2) or "b").lower()
    return int(match.group(1)) * _SIZE_UNITS[unit]


def _ms_env(name: str, default_s: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default_s
    return float(raw) / 1000.0


def config_from_env() -> ServiceConfig:
    return ServiceConfig(
        port=int(os.getenv("PORT", str(DEFAULT_SERVICE_CONFIG["port"]))),
        data_dir=os.getenv("DATA_DIR", os.path.join(os.getcwd(), DEFAULT_SERVICE_CONFIG["data_dir"])),
        json_limit=os.getenv("JSON_LIMIT", DEFAULT_SERVICE_CONFIG["json_limit"]),
        webhook_url=os.getenv("WEBHOOK_URL", DEFAULT_SERVICE_CONFIG["webhook_url"]),
        webhook_timeout_s=_ms_env("WEBHOOK_TIMEOUT_MS", DEFAULT_SERVICE_CONFIG["webhook_timeout_s"]),
        webhook_max_retries=int(os.getenv("WEBHOOK_MAX_RETRIES", str(DEFAULT_SERVICE_CONFIG["webhook_max_retries"]))),
        webhook_retry_base_s=_ms_env("WEBHOOK_RETRY_BASE_MS", DEFAULT_SERVICE_CONFIG["webhook_retry_base_s"]),
        webhook_retry_max_s=_ms_env("WEBHOOK_RETRY_MAX_MS", DEFAULT_SERVICE_CONFIG["webhook_retry_max_s"]),
        reconnect_base_s=_ms_env("RECONNECT_BASE_MS", DEFAULT_SERVICE_CONFIG["reconnect_base_s"]),
        reconnect_max_s=_ms_env("RECONNECT_MAX_MS", DEFAULT_SERVICE_CONFIG["reconnect_max_s"]),
        log_level=os.getenv("LOG_LEVEL", DEFAULT_SERVICE_CONFIG["log_level"]).upper(),
        session_factory=os.getenv("WABRIDGE_SESSION_FACTORY") or None,
    )
