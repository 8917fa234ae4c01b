"""livegraph — real-time room synchronization for collaboratively edited graph documents."""

from livegraph._version import __version__
from livegraph.config import Settings
from livegraph.core.engine import SyncEngine
from livegraph.core.events import EngineEvent, EventHooks
from livegraph.core.presence import PresenceTracker
from livegraph.core.registry import SessionRegistry
from livegraph.core.types import CacheEntry
from livegraph.infra.daemon import SyncDaemon
from livegraph.infra.store import DocumentStore, MemoryDocumentStore, StoredDocument, StoreError, open_store
from livegraph.net.client import SyncClient
from livegraph.net.server import SyncServer

__all__ = [
    "__version__",
    "CacheEntry",
    "DocumentStore",
    "EngineEvent",
    "EventHooks",
    "MemoryDocumentStore",
    "PresenceTracker",
    "SessionRegistry",
    "Settings",
    "StoreError",
    "StoredDocument",
    "SyncClient",
    "SyncDaemon",
    "SyncEngine",
    "SyncServer",
    "open_store",
]
