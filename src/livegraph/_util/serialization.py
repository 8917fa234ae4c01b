"""Msgpack serialization helpers for wire frames."""

from __future__ import annotations

from typing import Any

import msgpack


def pack(obj: Any) -> bytes:
    """Serialize an object to msgpack bytes."""
    return msgpack.packb(obj, use_bin_type=True)


def unpack(data: bytes) -> Any:
    """Deserialize msgpack bytes, raising ValueError on malformed input."""
    try:
        return msgpack.unpackb(data, raw=False)
    except (ValueError, TypeError) as exc:
        # msgpack's ExtraData/FormatError/StackError all derive from ValueError
        raise ValueError("malformed msgpack frame") from exc
