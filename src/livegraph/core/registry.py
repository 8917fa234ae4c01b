"""SessionRegistry — room membership and the per-document write-through cache."""

from __future__ import annotations

import logging
import time

from livegraph.core.types import CacheEntry, ConnectionId, DocumentId

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps document IDs to their live membership and cached state.

    All mutations are synchronous, so on a single event loop every call is
    atomic with respect to other logical operations and no locking is needed.
    Membership sets keep join order (dicts used as ordered sets).
    """

    def __init__(self) -> None:
        self._rooms: dict[DocumentId, dict[ConnectionId, None]] = {}
        self._joined: dict[ConnectionId, dict[DocumentId, None]] = {}
        self._cache: dict[DocumentId, CacheEntry] = {}
        self._touched: dict[DocumentId, float] = {}
        # highest version per document known to be in the durable store
        self._persisted: dict[DocumentId, int] = {}

    def join(self, document_id: DocumentId, connection_id: ConnectionId) -> None:
        room = self._rooms.get(document_id)
        if room is None:
            room = self._rooms[document_id] = {}
            logger.debug("room created: %s", document_id)
        room[connection_id] = None
        self._joined.setdefault(connection_id, {})[document_id] = None

    def leave(self, document_id: DocumentId, connection_id: ConnectionId) -> int:
        """Remove a member and return how many remain (0 for unknown rooms)."""
        joined = self._joined.get(connection_id)
        if joined is not None:
            joined.pop(document_id, None)
            if not joined:
                del self._joined[connection_id]

        room = self._rooms.get(document_id)
        if room is None:
            return 0
        room.pop(connection_id, None)
        if not room:
            del self._rooms[document_id]
            logger.debug("room deleted: %s", document_id)
            return 0
        return len(room)

    def members(self, document_id: DocumentId) -> list[ConnectionId]:
        return list(self._rooms.get(document_id, ()))

    def member_count(self, document_id: DocumentId) -> int:
        return len(self._rooms.get(document_id, ()))

    def is_member(self, document_id: DocumentId, connection_id: ConnectionId) -> bool:
        return connection_id in self._rooms.get(document_id, ())

    def rooms_for(self, connection_id: ConnectionId) -> list[DocumentId]:
        return list(self._joined.get(connection_id, ()))

    @property
    def room_ids(self) -> list[DocumentId]:
        return list(self._rooms)

    def get_cache(self, document_id: DocumentId) -> CacheEntry | None:
        return self._cache.get(document_id)

    def set_cache(self, document_id: DocumentId, entry: CacheEntry) -> None:
        self._cache[document_id] = entry
        self._touched[document_id] = time.monotonic()

    @property
    def cached_ids(self) -> list[DocumentId]:
        return list(self._cache)

    def mark_persisted(self, document_id: DocumentId, version: int) -> None:
        if version > self._persisted.get(document_id, 0):
            self._persisted[document_id] = version

    def persisted_version(self, document_id: DocumentId) -> int:
        return self._persisted.get(document_id, 0)

    def evict_idle(self, max_idle: float, now: float | None = None) -> list[DocumentId]:
        """Drop cache entries of empty rooms untouched for ``max_idle`` seconds.

        Only entries whose version already reached the durable store are
        dropped, so the next join re-hydrates exactly what was cached.
        """
        if now is None:
            now = time.monotonic()
        evicted = [
            doc_id
            for doc_id, touched in self._touched.items()
            if doc_id not in self._rooms
            and now - touched > max_idle
            and self._cache[doc_id].version <= self._persisted.get(doc_id, 0)
        ]
        for doc_id in evicted:
            self._cache.pop(doc_id, None)
            self._touched.pop(doc_id, None)
            self._persisted.pop(doc_id, None)
        if evicted:
            logger.info("evicted %d idle cache entries", len(evicted))
        return evicted
