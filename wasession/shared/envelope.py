from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union
import json
import uuid

from wasession.shared.utils import now_ms


class MalformedFrameError(Exception):
    """An inbound gateway frame is not a well-formed envelope."""


def _new_frame_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Envelope:
    """
    One gateway frame.

        {"type": "SEND_TEXT", "id": "<hex>", "ts": <unix ms>, "payload": {...}}

    ``id`` is chosen by the sender; the gateway answers requests with a
    RESULT frame whose ``payload.ref`` repeats it.
    """
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_frame_id)
    ts: int = field(default_factory=now_ms)

    @classmethod
    def from_json(cls, raw: Union[str, bytes]) -> 'Envelope':
        if isinstance(raw, bytes):
            try:
                raw = raw.decode('utf-8')
            except UnicodeDecodeError as e:
                raise MalformedFrameError(f"frame is not UTF-8: {e}") from e
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedFrameError(f"frame is not JSON: {e}") from e
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: Any) -> 'Envelope':
        if not isinstance(data, dict):
            raise MalformedFrameError(f"frame must be an object, got {type(data).__name__}")

        frame_type = data.get('type')
        if not isinstance(frame_type, str) or not frame_type:
            raise MalformedFrameError("frame has no type")
        payload = data.get('payload')
        if not isinstance(payload, dict):
            raise MalformedFrameError(f"{frame_type} frame has no payload object")

        frame_id = data.get('id')
        if frame_id is not None and not isinstance(frame_id, str):
            raise MalformedFrameError(f"{frame_type} frame id must be a string")
        ts = data.get('ts')
        # bool is an int subclass
        if ts is not None and (isinstance(ts, bool) or not isinstance(ts, int)):
            raise MalformedFrameError(f"{frame_type} frame ts must be integer milliseconds")

        return cls(
            type=frame_type,
            payload=payload,
            id=frame_id or _new_frame_id(),
            ts=now_ms() if ts is None else ts,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {'type': self.type, 'id': self.id, 'ts': self.ts, 'payload': self.payload}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(',', ':'), sort_keys=True)


def create_envelope(frame_type: str, payload: Optional[Dict[str, Any]] = None,
                    ts: Optional[int] = None) -> Envelope:
    """New outbound frame with a fresh id, stamped now unless ``ts`` is given."""
    return Envelope(type=frame_type, payload=dict(payload or {}), ts=now_ms() if ts is None else ts)
