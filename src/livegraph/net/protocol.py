"""Wire protocol: one dataclass per message kind, msgpack-encoded frames.

Every frame is a msgpack map carrying a ``type`` tag plus the message's
camelCase fields. Inbound fields that a message needs may still be absent
(they decode to ``None``); the engine decides what to drop. Fields that are
present but have the wrong type make the whole frame undecodable.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar

from livegraph._util.serialization import pack, unpack


class ProtocolError(ValueError):
    """Raised when a frame cannot be decoded into a known message."""


class MessageType(str, Enum):
    # client -> server
    JOIN_ROOM = "join-room"
    SUBMIT_UPDATE = "submit-update"
    PING = "ping"
    # both directions
    CURSOR_SIGNAL = "cursor-signal"
    SELECTION_SIGNAL = "selection-signal"
    # server -> client
    WELCOME = "welcome"
    STATE_SNAPSHOT = "state-snapshot"
    MEMBERSHIP_UPDATE = "membership-update"
    PONG = "pong"


def _wire(name: str, kind: type | tuple[type, ...] | None = None, default: Any = None) -> Any:
    return field(default=default, metadata={"wire": name, "kind": kind})


@dataclass
class Message:
    type: ClassVar[MessageType]

    def to_wire(self) -> dict[str, Any]:
        frame: dict[str, Any] = {"type": self.type.value}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is not None:
                frame[f.metadata["wire"]] = value
        return frame

    @classmethod
    def from_wire(cls, frame: dict[str, Any]) -> Message:
        kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            value = frame.get(f.metadata["wire"])
            if value is None:
                continue
            kind = f.metadata["kind"]
            if kind is not None and not isinstance(value, kind):
                raise ProtocolError(
                    f"{cls.type.value}: field {f.metadata['wire']!r} has type {type(value).__name__}"
                )
            kwargs[f.name] = value
        return cls(**kwargs)


@dataclass
class JoinRoom(Message):
    type: ClassVar[MessageType] = MessageType.JOIN_ROOM

    document_id: str | None = _wire("documentId", str)


@dataclass
class SubmitUpdate(Message):
    type: ClassVar[MessageType] = MessageType.SUBMIT_UPDATE

    document_id: str | None = _wire("documentId", str)
    content: Any = _wire("content")
    origin: str | None = _wire("originConnectionId", str)


@dataclass
class CursorSignal(Message):
    """Pointer position as percentages of the canvas (``{"xPct", "yPct"}``)."""

    type: ClassVar[MessageType] = MessageType.CURSOR_SIGNAL

    document_id: str | None = _wire("documentId", str)
    cursor: dict[str, Any] | None = _wire("cursor", dict)
    origin: str | None = _wire("originConnectionId", str)


@dataclass
class SelectionSignal(Message):
    """Current selection (``{"cellId", "kind"}``); ``None`` means deselected."""

    type: ClassVar[MessageType] = MessageType.SELECTION_SIGNAL

    document_id: str | None = _wire("documentId", str)
    selection: dict[str, Any] | None = _wire("selection", dict)
    origin: str | None = _wire("originConnectionId", str)

    def to_wire(self) -> dict[str, Any]:
        frame = super().to_wire()
        # an explicit nil selection is meaningful, keep it on the wire
        frame.setdefault("selection", None)
        return frame


@dataclass
class Ping(Message):
    type: ClassVar[MessageType] = MessageType.PING


@dataclass
class Welcome(Message):
    type: ClassVar[MessageType] = MessageType.WELCOME

    connection_id: str | None = _wire("connectionId", str)


@dataclass
class StateSnapshot(Message):
    type: ClassVar[MessageType] = MessageType.STATE_SNAPSHOT

    document_id: str | None = _wire("documentId", str)
    content: Any = _wire("content")
    version: int = _wire("version", int, default=0)
    updated_at: float | None = _wire("updatedAt", (int, float))
    origin: str | None = _wire("originConnectionId", str)


@dataclass
class MembershipUpdate(Message):
    type: ClassVar[MessageType] = MessageType.MEMBERSHIP_UPDATE

    document_id: str | None = _wire("documentId", str)
    members: list[str] = _wire("members", list, default=None)
    count: int = _wire("count", int, default=0)

    def __post_init__(self) -> None:
        if self.members is None:
            self.members = []


@dataclass
class Pong(Message):
    type: ClassVar[MessageType] = MessageType.PONG


PresenceSignal = CursorSignal | SelectionSignal
ClientMessage = JoinRoom | SubmitUpdate | CursorSignal | SelectionSignal | Ping
ServerMessage = Welcome | StateSnapshot | MembershipUpdate | CursorSignal | SelectionSignal | Pong

_MESSAGE_CLASSES: dict[MessageType, type[Message]] = {
    cls.type: cls
    for cls in (
        JoinRoom,
        SubmitUpdate,
        CursorSignal,
        SelectionSignal,
        Ping,
        Welcome,
        StateSnapshot,
        MembershipUpdate,
        Pong,
    )
}


def encode_message(message: Message) -> bytes:
    return pack(message.to_wire())


def decode_message(data: bytes | str) -> Message:
    """Decode a frame into its message dataclass or raise ProtocolError."""
    if isinstance(data, str):
        raise ProtocolError("text frames are not supported")
    try:
        frame = unpack(bytes(data))
    except ValueError as exc:
        raise ProtocolError("invalid frame encoding") from exc
    if not isinstance(frame, dict):
        raise ProtocolError("frame must be a map")
    try:
        msg_type = MessageType(frame.get("type"))
    except ValueError as exc:
        raise ProtocolError(f"unknown message type {frame.get('type')!r}") from exc
    return _MESSAGE_CLASSES[msg_type].from_wire(frame)
