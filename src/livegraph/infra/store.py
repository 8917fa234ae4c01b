"""DocumentStore ABC + MemoryDocumentStore + open_store factory."""

from __future__ import annotations

import abc
import copy
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlsplit

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Transient failure talking to the backing store."""


@dataclass(frozen=True)
class StoredDocument:
    document_id: str
    content: Any
    version: int
    updated_at: float


class DocumentStore(abc.ABC):
    """Durable load-one/upsert-one storage for documents.

    ``upsert`` is conditional: a record is only written when the stored
    version is lower than the incoming one, so persist calls that complete
    out of order can never replace a newer version with an older one.
    Implementations connect lazily on first use and reuse the connection.
    """

    @abc.abstractmethod
    async def load(self, document_id: str) -> StoredDocument | None: ...

    @abc.abstractmethod
    async def upsert(self, document_id: str, content: Any, version: int, updated_at: float) -> bool: ...

    async def close(self) -> None:
        return None


class MemoryDocumentStore(DocumentStore):
    """Process-local store; records vanish with the process."""

    def __init__(self, namespace: str = "diagrams") -> None:
        self._namespace = namespace
        self._records: dict[str, StoredDocument] | None = None

    @property
    def namespace(self) -> str:
        return self._namespace

    def _connect(self) -> dict[str, StoredDocument]:
        if self._records is None:
            self._records = {}
            logger.debug("memory store opened: namespace=%s", self._namespace)
        return self._records

    def _key(self, document_id: str) -> str:
        return f"{self._namespace}:{document_id}"

    async def load(self, document_id: str) -> StoredDocument | None:
        record = self._connect().get(self._key(document_id))
        if record is None:
            return None
        return StoredDocument(
            document_id=record.document_id,
            content=copy.deepcopy(record.content),
            version=record.version,
            updated_at=record.updated_at,
        )

    async def upsert(self, document_id: str, content: Any, version: int, updated_at: float) -> bool:
        records = self._connect()
        key = self._key(document_id)
        current = records.get(key)
        if current is not None and current.version >= version:
            return False
        records[key] = StoredDocument(
            document_id=document_id,
            content=copy.deepcopy(content),
            version=version,
            updated_at=updated_at,
        )
        return True


def open_store(url: str, namespace: str = "diagrams") -> DocumentStore:
    """Build a store from a connection string.

    ``memory://`` keeps records in process, ``file:///path`` writes one JSON
    file per document below ``path/<namespace>``, and anything else is handed
    to SQLAlchemy as an async database URL (e.g. ``sqlite+aiosqlite:///x.db``).
    """
    scheme = urlsplit(url).scheme
    if scheme == "memory":
        return MemoryDocumentStore(namespace)
    if scheme == "file":
        from livegraph.infra.file_store import FileDocumentStore

        return FileDocumentStore.from_url(url, namespace)
    if not scheme:
        raise ValueError(f"store URL needs a scheme: {url!r}")

    from livegraph.infra.sql_store import SQLDocumentStore

    return SQLDocumentStore(url, namespace)
