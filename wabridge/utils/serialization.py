from __future__ import annotations

import base64
import json
from typing import Any


def json_default(value: Any) -> Any:
    """``json.dumps`` fallback for protocol payloads (bytes become base64)."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def to_jsonable(value: Any) -> Any:
    return json.loads(json.dumps(value, default=json_default))
