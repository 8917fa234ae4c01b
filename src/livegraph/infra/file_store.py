"""FileDocumentStore — one JSON file per document on local disk."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any
from urllib.parse import quote, urlsplit

import anyio

from livegraph.infra.store import DocumentStore, StoredDocument, StoreError

logger = logging.getLogger(__name__)


class FileDocumentStore(DocumentStore):
    """Maps each document to a JSON file in a directory:

        <base_dir>/<namespace>/<quoted document id>.json

    Files are replaced atomically (write to a temp file, then rename), so a
    concurrent load never sees a half-written record.
    """

    def __init__(self, base_dir: str | Path, namespace: str = "diagrams") -> None:
        self._root = anyio.Path(base_dir) / namespace
        self._ready = False

    @classmethod
    def from_url(cls, url: str, namespace: str = "diagrams") -> FileDocumentStore:
        parts = urlsplit(url)
        path = f"{parts.netloc}{parts.path}"
        if not path:
            raise ValueError(f"file store URL needs a directory: {url!r}")
        return cls(path, namespace)

    @property
    def root(self) -> Path:
        return Path(self._root)

    async def _connect(self) -> None:
        if self._ready:
            return
        try:
            await self._root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"cannot create store directory {self._root}") from exc
        self._ready = True
        logger.debug("file store opened at %s", self._root)

    def _path(self, document_id: str) -> anyio.Path:
        return self._root / f"{quote(document_id, safe='')}.json"

    async def _read(self, document_id: str) -> StoredDocument | None:
        path = self._path(document_id)
        try:
            raw = await path.read_text()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StoreError(f"cannot read {path}") from exc
        try:
            data = json.loads(raw)
            return StoredDocument(
                document_id=data["documentId"],
                content=data["content"],
                version=int(data["version"]),
                updated_at=float(data["updatedAt"]),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"malformed record in {path}") from exc

    async def load(self, document_id: str) -> StoredDocument | None:
        await self._connect()
        return await self._read(document_id)

    async def upsert(self, document_id: str, content: Any, version: int, updated_at: float) -> bool:
        await self._connect()
        current = await self._read(document_id)
        if current is not None and current.version >= version:
            return False
        record = {
            "documentId": document_id,
            "content": content,
            "version": version,
            "updatedAt": updated_at,
        }
        path = self._path(document_id)
        try:
            raw = json.dumps(record)
        except (TypeError, ValueError) as exc:
            raise StoreError(f"document {document_id!r} v{version} is not JSON-serializable") from exc
        tmp = path.with_name(f"{path.name}.{os.getpid()}.tmp")
        try:
            await tmp.write_text(raw)
            await tmp.replace(path)
        except OSError as exc:
            raise StoreError(f"cannot write {path}") from exc
        return True
