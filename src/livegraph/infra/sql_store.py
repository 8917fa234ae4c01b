"""SQLDocumentStore — documents in a SQL table through SQLAlchemy's asyncio engine."""

from __future__ import annotations

import logging
from typing import Any

import anyio
from sqlalchemy import JSON, Column, Float, Integer, MetaData, String, Table, insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from livegraph.infra.store import DocumentStore, StoredDocument, StoreError

logger = logging.getLogger(__name__)


def document_table(namespace: str, metadata: MetaData | None = None) -> Table:
    """One row per document; the namespace becomes the table name."""
    return Table(
        namespace,
        metadata if metadata is not None else MetaData(),
        Column("document_id", String(255), primary_key=True),
        Column("content", JSON, nullable=False),
        Column("version", Integer, nullable=False, default=0),
        Column("updated_at", Float, nullable=False),
    )


class SQLDocumentStore(DocumentStore):
    """Stores documents in any database SQLAlchemy can reach asynchronously.

    The engine is created on first use and reused by every document; the
    table is created at the same time if it does not exist yet.
    """

    def __init__(self, url: str, namespace: str = "diagrams", *, echo: bool = False) -> None:
        self._url = url
        self._echo = echo
        self._table = document_table(namespace)
        self._engine: AsyncEngine | None = None
        self._connect_lock = anyio.Lock()

    @property
    def table(self) -> Table:
        return self._table

    async def _connect(self) -> AsyncEngine:
        async with self._connect_lock:
            if self._engine is not None:
                return self._engine
            engine = create_async_engine(self._url, echo=self._echo)
            try:
                async with engine.begin() as conn:
                    await conn.run_sync(self._table.metadata.create_all)
            except (SQLAlchemyError, OSError) as exc:
                await engine.dispose()
                raise StoreError(f"cannot connect to document store at {engine.url!r}") from exc
            self._engine = engine
            logger.info("document store connected: %r table=%s", engine.url, self._table.name)
            return engine

    async def load(self, document_id: str) -> StoredDocument | None:
        engine = await self._connect()
        stmt = select(self._table).where(self._table.c.document_id == document_id)
        try:
            async with engine.connect() as conn:
                row = (await conn.execute(stmt)).first()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(f"failed to load document {document_id!r}") from exc
        if row is None:
            return None
        return StoredDocument(
            document_id=row.document_id,
            content=row.content,
            version=row.version,
            updated_at=row.updated_at,
        )

    async def upsert(self, document_id: str, content: Any, version: int, updated_at: float) -> bool:
        engine = await self._connect()
        table = self._table
        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    update(table)
                    .where(table.c.document_id == document_id, table.c.version < version)
                    .values(content=content, version=version, updated_at=updated_at)
                )
                if result.rowcount:
                    return True
                existing = await conn.execute(
                    select(table.c.version).where(table.c.document_id == document_id)
                )
                if existing.first() is not None:
                    return False
                await conn.execute(
                    insert(table).values(
                        document_id=document_id,
                        content=content,
                        version=version,
                        updated_at=updated_at,
                    )
                )
                return True
        except (SQLAlchemyError, OSError) as exc:
            raise StoreError(f"failed to persist document {document_id!r} v{version}") from exc

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
