"""Raw message parsing — the validation boundary for pushed messages.

Learn: Producers disagree on envelope shape. The socket service sends
{"type": ..., "payload": ...}, the polling endpoint {"type": ..., "data": ...},
and newer publishers {"kind": ..., "payload": ...}. parse_message() accepts
all of them and returns either a validated (kind, payload) pair, the
HEARTBEAT marker, or raises MalformedMessageError.

Nothing here touches client state; the caller decides what to do with
the result.
"""

import json
from typing import Any, Union

from pydantic import BaseModel, ValidationError

from contentlab_realtime.events.types import ALERT, HEARTBEAT, resolve_kind
from contentlab_realtime.schemas.events import PAYLOAD_MODELS

RawMessage = Union[dict, str, bytes]


class MalformedMessageError(Exception):
    """Raised when a raw message cannot be turned into a known event."""

    def __init__(self, reason: str, kind: str | None = None):
        super().__init__(reason)
        self.reason = reason
        self.kind = kind


class Heartbeat:
    """Parsed heartbeat — protocol traffic, not an event."""

    __slots__ = ("system_status", "server_time")

    def __init__(self, system_status: str | None, server_time: str | None):
        self.system_status = system_status
        self.server_time = server_time

    @property
    def healthy(self) -> bool:
        return self.system_status in (None, "healthy")


def decode(raw: RawMessage) -> dict[str, Any]:
    """Turn a raw transport message into a dict envelope."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessageError(f"undecodable bytes: {e}") from e
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise MalformedMessageError(f"invalid JSON: {e.msg}") from e
    if not isinstance(raw, dict):
        raise MalformedMessageError(f"expected an object, got {type(raw).__name__}")
    return raw


def _unwrap_payload(kind: str, body: Any) -> dict[str, Any]:
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise MalformedMessageError("payload must be an object", kind=kind)
    # alert_created nests the alert record under "alert"
    if kind == ALERT and isinstance(body.get("alert"), dict):
        flattened = {k: v for k, v in body.items() if k != "alert"}
        flattened.update(body["alert"])
        return flattened
    return body


def parse_message(raw: RawMessage) -> Union[tuple[str, BaseModel], Heartbeat]:
    """Validate a raw message.

    Returns (kind, payload_model) for events, a Heartbeat for heartbeats.
    Raises MalformedMessageError for anything else.
    """
    envelope = decode(raw)

    name = envelope.get("kind", envelope.get("type"))
    if not isinstance(name, str) or not name:
        raise MalformedMessageError("missing message kind")

    body = envelope["payload"] if "payload" in envelope else envelope.get("data")

    if name == HEARTBEAT:
        body = body if isinstance(body, dict) else {}
        return Heartbeat(
            system_status=body.get("systemStatus", body.get("system_status")),
            server_time=body.get("serverTime", body.get("server_time")),
        )

    kind = resolve_kind(name)
    if kind is None:
        raise MalformedMessageError(f"unrecognized kind {name!r}", kind=name)

    try:
        payload = PAYLOAD_MODELS[kind].model_validate(_unwrap_payload(kind, body))
    except ValidationError as e:
        raise MalformedMessageError(
            f"invalid {kind} payload: {e.error_count()} error(s)", kind=kind
        ) from e
    return kind, payload
