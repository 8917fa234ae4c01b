"""Type definitions for the livegraph core module."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Protocol


DocumentId = str
ConnectionId = str


@dataclass(frozen=True)
class CacheEntry:
    """Last-known-good state of a document. Replaced wholesale, never mutated."""

    content: Any
    version: int = 0
    updated_at: float = field(default_factory=time.time)


class Peer(Protocol):
    """Anything the engine can address: a live connection or a test double."""

    @property
    def connection_id(self) -> ConnectionId: ...

    def deliver(self, message: Any) -> None: ...
