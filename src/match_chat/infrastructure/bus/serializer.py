"""JSON envelope for events crossing Redis: {"event", "data", "emitted_at"}."""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any
from uuid import UUID


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


def serialize_event(event_type: str, payload: dict[str, Any]) -> str:
    envelope = {
        "event": event_type,
        "data": payload,
        "emitted_at": datetime.now(timezone.utc),
    }
    return json.dumps(envelope, cls=_Encoder)


def deserialize_event(raw: str | bytes) -> tuple[str, dict[str, Any]]:
    """Return (event_type, data). A missing or null ``data`` decodes as an empty dict."""
    envelope = json.loads(raw)
    if not isinstance(envelope, dict) or "event" not in envelope:
        raise ValueError("Malformed event envelope")
    data = envelope.get("data") or {}
    if not isinstance(data, dict):
        raise ValueError(f"Event {envelope['event']!r} has non-object data")
    return envelope["event"], data
