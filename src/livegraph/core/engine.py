"""SyncEngine — turns client writes into versioned snapshots and fans them out."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import anyio

from livegraph.core.events import EngineEvent, EventHooks
from livegraph.core.presence import PresenceTracker
from livegraph.core.registry import SessionRegistry
from livegraph.core.types import CacheEntry, ConnectionId, DocumentId, Peer
from livegraph.infra.store import DocumentStore
from livegraph.net.protocol import PresenceSignal, StateSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PersistJob:
    document_id: DocumentId
    content: Any
    version: int
    updated_at: float


class SyncEngine:
    """Room-level synchronization over a SessionRegistry and a DocumentStore.

    Everything that touches the registry or the cache runs synchronously
    between suspension points, so writes to a document are versioned and
    broadcast in server arrival order. Persistence is queued and drained by
    ``persist_loop``; broadcasting never waits for it.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        store: DocumentStore,
        *,
        presence: PresenceTracker | None = None,
        hooks: EventHooks | None = None,
        persist_queue_size: int = 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._store = store
        self._presence = presence or PresenceTracker(registry)
        self._hooks = hooks or EventHooks()
        self._clock = clock
        self._running = False
        self._persist_send, self._persist_recv = anyio.create_memory_object_stream[PersistJob](
            persist_queue_size
        )
        self._pending_count = 0
        self._pending_drained = anyio.Event()
        self._pending_drained.set()

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def presence(self) -> PresenceTracker:
        return self._presence

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def hooks(self) -> EventHooks:
        return self._hooks

    @property
    def pending_writes(self) -> int:
        return self._pending_count

    # -- connection lifecycle ------------------------------------------------

    def attach(self, peer: Peer) -> None:
        self._presence.attach(peer)

    def detach(self, connection_id: ConnectionId) -> list[DocumentId]:
        """Forget a connection entirely: leave its rooms and drop its peer record."""
        left = self.handle_leave(connection_id)
        self._presence.detach(connection_id)
        return left

    # -- engine operations ---------------------------------------------------

    async def handle_join(self, document_id: DocumentId | None, connection_id: ConnectionId) -> CacheEntry | None:
        """Join a room and push the current snapshot to the joining connection only."""
        if not document_id:
            logger.debug("dropping join without document id from %s", connection_id)
            return None

        self._registry.join(document_id, connection_id)
        update = self._presence.announce(document_id)
        logger.info("connection %s joined %s (members=%d)", connection_id, document_id, update.count)
        self._hooks.fire(EngineEvent.PEER_JOINED, document_id, connection_id)

        entry = self._registry.get_cache(document_id)
        if entry is None:
            try:
                stored = await self._store.load(document_id)
            except Exception:
                logger.exception("failed to load document %s for join", document_id)
                self._hooks.fire(EngineEvent.LOAD_FAILED, document_id)
                return None
            # a write may have landed while the load was in flight; it is newer
            entry = self._registry.get_cache(document_id)
            if entry is None and stored is not None:
                entry = CacheEntry(content=stored.content, version=stored.version, updated_at=stored.updated_at)
                self._registry.set_cache(document_id, entry)
                self._registry.mark_persisted(document_id, stored.version)
        if entry is None:
            return None

        info = self._presence.get_peer(connection_id)
        if info is None or not self._registry.is_member(document_id, connection_id):
            logger.debug("connection %s left %s before its snapshot was ready", connection_id, document_id)
            return entry
        info.peer.deliver(
            StateSnapshot(
                document_id=document_id,
                content=entry.content,
                version=entry.version,
                updated_at=entry.updated_at,
            )
        )
        return entry

    def handle_write(
        self,
        document_id: DocumentId | None,
        content: Any,
        connection_id: ConnectionId,
        origin: str | None = None,
    ) -> CacheEntry | None:
        """Accept a full-document write: bump the version, cache, queue persistence, broadcast."""
        if not document_id or content is None:
            logger.debug("dropping malformed write from %s", connection_id)
            return None

        current = self._registry.get_cache(document_id)
        version = (current.version if current is not None else 0) + 1
        entry = CacheEntry(content=content, version=version, updated_at=self._clock())
        self._registry.set_cache(document_id, entry)
        self._enqueue_persist(PersistJob(document_id, content, version, entry.updated_at))

        snapshot = StateSnapshot(
            document_id=document_id,
            content=content,
            version=version,
            updated_at=entry.updated_at,
            origin=origin or connection_id,
        )
        fanout = self._presence.relay(document_id, snapshot, exclude=connection_id)
        logger.debug("document %s v%d from %s sent to %d peers", document_id, version, connection_id, fanout)
        self._hooks.fire(EngineEvent.WRITE_ACCEPTED, document_id, entry)
        return entry

    def handle_presence(self, signal: PresenceSignal, connection_id: ConnectionId) -> int:
        """Relay a cursor or selection signal to the other members of its room."""
        if not signal.document_id:
            return 0
        if signal.origin is None:
            signal.origin = connection_id
        return self._presence.relay(signal.document_id, signal, exclude=connection_id)

    def handle_leave(self, connection_id: ConnectionId) -> list[DocumentId]:
        """Remove a connection from every room it joined and notify those left behind."""
        rooms = self._registry.rooms_for(connection_id)
        for document_id in rooms:
            remaining = self._registry.leave(document_id, connection_id)
            logger.info("connection %s left %s (members=%d)", connection_id, document_id, remaining)
            if remaining:
                self._presence.announce(document_id)
            self._hooks.fire(EngineEvent.PEER_LEFT, document_id, connection_id)
        return rooms

    # -- persistence ---------------------------------------------------------

    def _enqueue_persist(self, job: PersistJob) -> None:
        try:
            self._persist_send.send_nowait(job)
        except anyio.WouldBlock:
            logger.warning(
                "persist queue full; document %s v%d kept in memory only", job.document_id, job.version
            )
            return
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.warning("engine stopped; document %s v%d not persisted", job.document_id, job.version)
            return
        if self._pending_count == 0:
            self._pending_drained = anyio.Event()
        self._pending_count += 1

    async def _persist(self, job: PersistJob) -> None:
        try:
            written = await self._store.upsert(job.document_id, job.content, job.version, job.updated_at)
        except Exception:
            logger.exception("failed to persist document %s v%d", job.document_id, job.version)
            await self._hooks.fire_async(EngineEvent.PERSIST_FAILED, job.document_id, job.version)
            return
        # a refused upsert means the store already holds this version or newer
        self._registry.mark_persisted(job.document_id, job.version)
        if not written:
            logger.info("store already holds a newer version of %s than v%d", job.document_id, job.version)
        await self._hooks.fire_async(EngineEvent.PERSISTED, job.document_id, job.version, written)

    async def persist_loop(self, task_status: anyio.abc.TaskStatus = anyio.TASK_STATUS_IGNORED) -> None:
        """Continuously write queued snapshots to the store, one at a time."""
        self._running = True
        task_status.started()
        try:
            while self._running:
                try:
                    job = await self._persist_recv.receive()
                except anyio.EndOfStream:
                    break
                try:
                    await self._persist(job)
                finally:
                    if self._pending_count > 0:
                        self._pending_count -= 1
                    if self._pending_count == 0:
                        self._pending_drained.set()
        finally:
            self._running = False

    async def flush_pending(self, timeout: float | None = None) -> bool:
        """Wait until queued snapshots have been handed to the store."""
        if timeout is None:
            await self._pending_drained.wait()
            return True
        with anyio.move_on_after(timeout) as scope:
            await self._pending_drained.wait()
        return not scope.cancel_called

    def stop(self) -> None:
        """Stop accepting persistence; ``persist_loop`` drains what is queued, then exits."""
        self._persist_send.close()
