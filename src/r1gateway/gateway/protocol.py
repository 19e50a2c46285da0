"""
gateway/protocol.py — R1 Gateway Envelope Codec

Every frame on the wire is one JSON object in one of three shapes:

    Request   {"method": ..., "params": {...}, "id": ...}
    Response  {"type": "res", "id": ..., "ok": bool, "payload"|"error": ...}
    Event     {"type": "event", "event": ..., "payload": {...}}

parse_envelope() turns raw text into one of the three dataclasses;
to_json() on each produces exactly the shape above.
"""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from r1gateway.exceptions import EnvelopeParseError


# ─────────────────────────────────────────────────────────────────────────────
# Method and event names
# ─────────────────────────────────────────────────────────────────────────────

class Method(str, Enum):
    """Request methods the gateway understands (device → server)."""

    CONNECT          = "connect"
    GATEWAY_CONNECT  = "gateway.connect"
    CHAT_SEND        = "chat.send"


CONNECT_METHODS = frozenset({Method.CONNECT.value, Method.GATEWAY_CONNECT.value})


class EventName(str, Enum):
    """Events the gateway emits (server → device)."""

    CONNECT_CHALLENGE  = "connect.challenge"
    NODE_PAIR_APPROVED = "node.pair.approved"
    CONNECT_OK         = "connect.ok"
    CHAT               = "chat"


AUTH_FAILED_CODE = 401


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


# ─────────────────────────────────────────────────────────────────────────────
# Envelopes
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class Request:
    """
    Device → server request.

    `raw` keeps the whole decoded frame so handshake extractors can look at
    legacy top-level fields (`auth`, `token`, `deviceId`). It is never
    serialized.
    """
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: Optional[Any] = None
    raw: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method, "params": self.params, "id": self.id}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class Response:
    """Server → device reply, correlated to a request id."""
    id: Optional[Any]
    ok: bool
    payload: Optional[dict[str, Any]] = None
    error: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": "res", "id": self.id, "ok": self.ok}
        if self.payload is not None:
            d["payload"] = self.payload
        if self.error is not None:
            d["error"] = self.error
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


@dataclass
class Event:
    """Fire-and-forget notification."""
    event: str
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": "event", "event": self.event, "payload": self.payload}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


Envelope = Union[Request, Response, Event]


def parse_envelope(raw: str | bytes) -> Envelope:
    """
    Parse one inbound frame.

    Raises EnvelopeParseError for invalid JSON (including nesting too deep
    to decode), non-object frames, and objects that match none of the
    three shapes.
    """
    try:
        d = json.loads(raw)
    except (ValueError, TypeError, RecursionError) as e:
        raise EnvelopeParseError(str(e), raw) from e

    if not isinstance(d, dict):
        raise EnvelopeParseError(f"expected a JSON object, got {type(d).__name__}", raw)

    if "method" in d:
        method = d["method"]
        if not isinstance(method, str):
            raise EnvelopeParseError("'method' must be a string", raw)
        params = d.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            raise EnvelopeParseError("'params' must be an object", raw)
        return Request(method=method, params=params, id=d.get("id"), raw=d)

    kind = d.get("type")
    if kind == "res":
        return Response(
            id=d.get("id"),
            ok=bool(d.get("ok", False)),
            payload=d.get("payload"),
            error=d.get("error"),
        )
    if kind == "event":
        event = d.get("event")
        if not isinstance(event, str):
            raise EnvelopeParseError("'event' must be a string", raw)
        payload = d.get("payload")
        return Event(event=event, payload=payload if isinstance(payload, dict) else {})

    raise EnvelopeParseError("frame is not a request, response or event", raw)


# ─────────────────────────────────────────────────────────────────────────────
# Outbound chat payload
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class OutboundChatEvent:
    """Final assistant reply pushed to a device as a `chat` event."""
    text: str
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    session_key: str = "main"
    timestamp: int = field(default_factory=now_ms)

    def to_payload(self) -> dict[str, Any]:
        return {
            "runId": self.run_id,
            "sessionKey": self.session_key,
            "seq": 1,
            "state": "final",
            "message": {
                "role": "assistant",
                "content": [{"type": "text", "text": self.text}],
                "timestamp": self.timestamp,
                "stopReason": "stop",
                "usage": {"input": 0, "output": 0, "totalTokens": 0},
            },
        }


# ─────────────────────────────────────────────────────────────────────────────
# Factory helpers — Server → Device frames
# ─────────────────────────────────────────────────────────────────────────────

def make_challenge(nonce: Optional[str] = None) -> Event:
    """First frame on every new connection."""
    return Event(
        event=EventName.CONNECT_CHALLENGE.value,
        payload={"nonce": nonce or str(uuid.uuid4()), "ts": now_ms()},
    )


def make_pair_approved(device_id: str) -> Event:
    return Event(
        event=EventName.NODE_PAIR_APPROVED.value,
        payload={"deviceId": device_id, "token": str(uuid.uuid4())},
    )


def make_paired_response(request_id: Any) -> Response:
    return Response(id=request_id, ok=True, payload={"status": "paired", "ts": now_ms()})


def make_connect_ok(device_id: str) -> Event:
    return Event(
        event=EventName.CONNECT_OK.value,
        payload={"deviceId": device_id, "ts": now_ms()},
    )


def make_auth_failed(request_id: Any) -> Response:
    return Response(
        id=request_id,
        ok=False,
        error={"code": AUTH_FAILED_CODE, "message": "Invalid token"},
    )


def make_ack(request_id: Any) -> Response:
    """Bare acknowledgement: no payload, no error."""
    return Response(id=request_id, ok=True)


def make_chat_event(chat: OutboundChatEvent) -> Event:
    return Event(event=EventName.CHAT.value, payload=chat.to_payload())
