"""JSON envelopes for non-interactive CLI output.

Every command prints exactly one object::

    {"ok": true,  "command": "standings", "data": {...},  "timestamp": "..."}
    {"ok": false, "command": "standings", "error": {...}, "timestamp": "..."}

Models are dumped with camelCase keys, the same shape viewers receive.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel


def to_jsonable(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json", by_alias=True)
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_jsonable(getattr(obj, f.name)) for f in dataclasses.fields(obj)}
    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(item) for item in obj]
    return obj


def _envelope(command: str, ok: bool, key: str, body: Any) -> str:
    doc = {
        "ok": ok,
        "command": command,
        key: body,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    return json.dumps(doc, indent=2, default=str, ensure_ascii=False)


def format_json_response(*, data: Any, command: str) -> str:
    return _envelope(command, True, "data", to_jsonable(data))


def format_json_error(*, code: str, message: str, command: str, **extra: Any) -> str:
    return _envelope(command, False, "error", {"code": code, "message": message, **extra})
