"""SyncDaemon — composes SessionRegistry + SyncEngine + DocumentStore + SyncServer."""

from __future__ import annotations

import logging

import anyio

from livegraph.config import Settings
from livegraph.core.engine import SyncEngine
from livegraph.core.events import EventHooks
from livegraph.core.registry import SessionRegistry
from livegraph.infra.store import DocumentStore, MemoryDocumentStore, open_store
from livegraph.net.server import SyncServer

logger = logging.getLogger(__name__)


class SyncDaemon:
    """Long-running collaboration service for one process.

    Owns the registry and the store, runs the engine's persist loop and the
    optional idle-cache sweeper, and serves clients over websockets.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3001,
        store: DocumentStore | None = None,
        *,
        registry: SessionRegistry | None = None,
        hooks: EventHooks | None = None,
        max_message_size: int | None = 10 * 1024 * 1024,
        outbox_size: int = 256,
        persist_queue_size: int = 1024,
        cache_idle_ttl: float | None = None,
        eviction_interval: float = 60.0,
    ) -> None:
        self._registry = registry or SessionRegistry()
        self._store = store or MemoryDocumentStore()
        self._engine = SyncEngine(
            self._registry,
            self._store,
            hooks=hooks,
            persist_queue_size=persist_queue_size,
        )
        self._server = SyncServer(
            self._engine,
            host=host,
            port=port,
            max_size=max_message_size,
            outbox_size=outbox_size,
        )
        self._cache_idle_ttl = cache_idle_ttl
        self._eviction_interval = eviction_interval
        self._task_group: anyio.abc.TaskGroup | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> SyncDaemon:
        settings = settings or Settings()
        return cls(
            host=settings.host,
            port=settings.port,
            store=open_store(settings.store_url, settings.namespace),
            max_message_size=settings.max_message_size,
            outbox_size=settings.outbox_size,
            persist_queue_size=settings.persist_queue_size,
            cache_idle_ttl=settings.cache_idle_ttl,
            eviction_interval=settings.eviction_interval,
        )

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def store(self) -> DocumentStore:
        return self._store

    @property
    def server(self) -> SyncServer:
        return self._server

    @property
    def port(self) -> int:
        return self._server.port

    async def _eviction_loop(
        self, max_idle: float, task_status: anyio.abc.TaskStatus = anyio.TASK_STATUS_IGNORED
    ) -> None:
        task_status.started()
        while True:
            await anyio.sleep(self._eviction_interval)
            self._registry.evict_idle(max_idle)

    async def start(self) -> None:
        if self._task_group is not None:
            return
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        await self._task_group.start(self._engine.persist_loop)
        if self._cache_idle_ttl is not None:
            await self._task_group.start(self._eviction_loop, self._cache_idle_ttl)
        await self._server.start()
        logger.info("sync daemon started")

    async def stop(self) -> None:
        await self._server.stop()
        self._engine.stop()
        if self._task_group is not None:
            # let queued snapshots reach the store before shutting down
            if not await self._engine.flush_pending(timeout=5.0):
                logger.warning("shutting down with %d unpersisted writes", self._engine.pending_writes)
            self._task_group.cancel_scope.cancel()
            await self._task_group.__aexit__(None, None, None)
            self._task_group = None
        await self._store.close()
        logger.info("sync daemon stopped")

    async def run_forever(self) -> None:
        await self.start()
        try:
            await anyio.sleep_forever()
        finally:
            with anyio.CancelScope(shield=True):
                await self.stop()
