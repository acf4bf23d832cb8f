"""Wire format and payload types exchanged between the server and its agents."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, fields
from enum import IntEnum
from typing import Any, TypeVar

MIN_COLLECT_DURATION = 30.0
"""Smallest allowed status collection period, in seconds (exclusive)."""

MIN_HEART_BEAT_DURATION = 30.0
"""Smallest allowed heartbeat period, in seconds (exclusive)."""


class ProtocolError(ValueError):
    """Raised when bytes on the wire do not form a valid message."""


class MessageType(IntEnum):
    """Kind of a message: a request, a response or an error."""

    REQ = 0
    RESP = 1
    ERR = 2


@dataclass
class Message:
    """One frame of the protocol; ``data`` holds any JSON value."""

    id: str = ""
    type: MessageType | int = MessageType.REQ
    action: str = ""
    data: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": int(self.type),
            "action": self.action,
            "data": self.data,
        }

    def to_bytes(self) -> bytes:
        """Encode the message as compact JSON."""
        try:
            text = json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise ProtocolError(f"cannot encode message: {exc}") from exc
        return text.encode("utf-8")


def _string_field(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ProtocolError(f"field {key!r} must be a string, got {type(value).__name__}")
    return value


def _type_field(obj: dict[str, Any]) -> MessageType | int:
    value = obj.get("type")
    if value is None:
        return MessageType.REQ
    if isinstance(value, bool) or not isinstance(value, int):
        raise ProtocolError(f"field 'type' must be an integer, got {type(value).__name__}")
    try:
        return MessageType(value)
    except ValueError:
        return value


def to_message(message: bytes | str) -> Message:
    """Decode a JSON frame into a :class:`Message`."""
    try:
        obj = json.loads(message)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"invalid message: {exc}") from exc
    if obj is None:
        return Message()
    if not isinstance(obj, dict):
        raise ProtocolError(f"message must be a JSON object, got {type(obj).__name__}")
    return Message(
        id=_string_field(obj, "id"),
        type=_type_field(obj),
        action=_string_field(obj, "action"),
        data=obj.get("data"),
    )


_P = TypeVar("_P", bound="_Payload")


class _Payload:
    """JSON conversion shared by payload dataclasses."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)  # type: ignore[call-overload]

    @classmethod
    def from_dict(cls: type[_P], data: dict[str, Any] | None) -> _P:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ProtocolError(f"{cls.__name__} expects a JSON object")
        known = {f.name for f in fields(cls)}  # type: ignore[arg-type]
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass
class LoginReq(_Payload):
    id: str = ""


@dataclass
class HeartBeatReq(_Payload):
    pass


@dataclass
class StatusReq(_Payload):
    """Resource usage of an agent host; memory in MB, disk in GB."""

    cpu_usage: float = 0.0
    cpu_cores: int = 0
    mem_total: float = 0.0
    mem_usage: float = 0.0
    mem_percent: float = 0.0
    disk_total: float = 0.0
    disk_usage: float = 0.0
    disk_percent: float = 0.0
    server_time: str = ""


@dataclass
class StatusResp(_Payload):
    ok: bool = False


@dataclass
class HeartBeatResp(_Payload):
    ok: bool = False


@dataclass
class FileUploadReq(_Payload):
    file_name: str = ""
    chunk_size: int = 0


@dataclass
class TimeoutConfig:
    """Connection timeouts, all in seconds."""

    ping_wait: float = 0.0
    write_wait: float = 0.0
    read_wait: float = 0.0
    ping_period: float = 0.0