"""Frame codec: raw text <-> validated frame models."""

from __future__ import annotations

import json
from typing import Any

from pydantic import TypeAdapter, ValidationError

from livechat.errors import MalformedFrame
from livechat.protocol.frames import Frame, InboundFrame, OutboundFrame

_INBOUND: TypeAdapter[InboundFrame] = TypeAdapter(InboundFrame)
_OUTBOUND: TypeAdapter[OutboundFrame] = TypeAdapter(OutboundFrame)


def _load(raw: str | bytes) -> dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedFrame("frame is not valid UTF-8", raw) from e
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise MalformedFrame("frame is not JSON", raw) from e
    if not isinstance(data, dict):
        raise MalformedFrame("frame is not a JSON object", raw)
    if not isinstance(data.get("type"), str) or not data["type"]:
        raise MalformedFrame("frame has no type", raw)
    return data


def _validate(adapter: TypeAdapter, raw: str | bytes) -> Any:
    data = _load(raw)
    try:
        return adapter.validate_python(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(p) for p in first["loc"])
        raise MalformedFrame(
            f"invalid '{data['type']}' frame: {location}: {first['msg']}", raw
        ) from e


def decode(raw: str | bytes) -> InboundFrame:
    """Parse a client -> server frame. Raises MalformedFrame."""
    return _validate(_INBOUND, raw)


def decode_event(raw: str | bytes) -> OutboundFrame:
    """Parse a server -> client frame. Raises MalformedFrame."""
    return _validate(_OUTBOUND, raw)


def encode(frame: Frame) -> str:
    return frame.model_dump_json(by_alias=True, exclude_none=True)
