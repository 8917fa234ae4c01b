"""SyncClient — reference websocket client for the collaboration server."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import anyio
import websockets
import websockets.asyncio.client

from livegraph.net.protocol import (
    CursorSignal,
    JoinRoom,
    MembershipUpdate,
    Message,
    Ping,
    Pong,
    ProtocolError,
    SelectionSignal,
    StateSnapshot,
    SubmitUpdate,
    Welcome,
    decode_message,
    encode_message,
)

logger = logging.getLogger(__name__)


@dataclass
class PeerCursor:
    x_pct: float
    y_pct: float
    seen_at: float = field(default_factory=time.monotonic)


@dataclass
class PeerSelection:
    cell_id: str
    kind: str | None
    seen_at: float = field(default_factory=time.monotonic)


class SyncClient:
    """Client side of the room protocol.

    Holds the local view of one document: the latest applied snapshot, the
    room membership, and peer presence. Snapshots tagged with this client's
    own connection ID and snapshots older than the local version are ignored;
    presence entries that are not refreshed within ``presence_ttl`` seconds
    expire.
    """

    def __init__(self, ws: Any, uri: str, *, presence_ttl: float = 5.0) -> None:
        self._ws = ws
        self._uri = uri
        self._presence_ttl = presence_ttl
        self._closed = False
        self._task_group: anyio.abc.TaskGroup | None = None
        self._cursors: dict[str, PeerCursor] = {}
        self._selections: dict[str, PeerSelection] = {}
        self.connection_id: str | None = None
        self.document_id: str | None = None
        self.content: Any = None
        self.version = 0
        self.updated_at: float | None = None
        self.members: list[str] = []
        self.last_pong: float | None = None
        self.received: list[Message] = []

    @staticmethod
    async def _connect_with_retry(
        uri: str,
        *,
        connect_kwargs: dict[str, Any],
        retries: int,
        backoff_base: float,
        backoff_max: float,
    ) -> Any:
        attempt = 0
        while True:
            try:
                return await websockets.asyncio.client.connect(uri, **connect_kwargs)
            except (OSError, websockets.exceptions.WebSocketException):
                if attempt >= retries:
                    raise
                delay = min(backoff_base * (2**attempt), backoff_max)
                logger.warning(
                    "websocket connect failed (attempt=%s/%s); retrying in %.2fs",
                    attempt + 1,
                    retries + 1,
                    delay,
                )
                await anyio.sleep(delay)
                attempt += 1

    @classmethod
    async def connect(
        cls,
        uri: str,
        *,
        retries: int = 3,
        backoff_base: float = 0.2,
        backoff_max: float = 5.0,
        max_size: int | None = 10 * 1024 * 1024,
        presence_ttl: float = 5.0,
    ) -> SyncClient:
        """Open a connection and start receiving in the background."""
        ws = await cls._connect_with_retry(
            uri,
            connect_kwargs={"max_size": max_size},
            retries=retries,
            backoff_base=backoff_base,
            backoff_max=backoff_max,
        )
        client = cls(ws, uri, presence_ttl=presence_ttl)
        await client._start()
        # the welcome frame carries the identity used for echo suppression
        try:
            await client.wait_for(lambda c: c.connection_id is not None or not c.is_connected)
        except TimeoutError:
            await client.close()
            raise
        return client

    async def _start(self) -> None:
        if self._task_group is not None:
            return
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        await self._task_group.start(self.receive_loop)

    async def __aenter__(self) -> SyncClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def is_connected(self) -> bool:
        return not self._closed

    # -- outbound ------------------------------------------------------------

    async def send(self, message: Message) -> None:
        if self._closed:
            raise RuntimeError("cannot send on a closed client")
        try:
            await self._ws.send(encode_message(message))
        except websockets.exceptions.ConnectionClosed as exc:
            self._closed = True
            raise ConnectionError("websocket send failed; connection closed") from exc

    async def join(self, document_id: str) -> None:
        self.document_id = document_id
        self.content = None
        self.version = 0
        self.members = []
        self._cursors.clear()
        self._selections.clear()
        await self.send(JoinRoom(document_id=document_id))

    async def submit(self, content: Any) -> None:
        """Replace the whole document; the server assigns the next version.

        The server never echoes the write back, so ``version`` keeps the last
        remote version until the next snapshot from a peer brings it forward.
        """
        self._require_room()
        self.content = content
        await self.send(SubmitUpdate(document_id=self.document_id, content=content, origin=self.connection_id))

    async def send_cursor(self, x_pct: float, y_pct: float) -> None:
        self._require_room()
        x_pct = min(100.0, max(0.0, x_pct))
        y_pct = min(100.0, max(0.0, y_pct))
        await self.send(
            CursorSignal(
                document_id=self.document_id,
                cursor={"xPct": x_pct, "yPct": y_pct},
                origin=self.connection_id,
            )
        )

    async def send_selection(self, cell_id: str | None, kind: str | None = None) -> None:
        """Share the current selection; ``cell_id=None`` clears it for peers."""
        self._require_room()
        selection = {"cellId": cell_id, "kind": kind} if cell_id is not None else None
        await self.send(SelectionSignal(document_id=self.document_id, selection=selection, origin=self.connection_id))

    async def ping(self) -> None:
        await self.send(Ping())

    def _require_room(self) -> None:
        if self.document_id is None:
            raise RuntimeError("join a document before sending to it")

    # -- inbound -------------------------------------------------------------

    def apply(self, message: Message) -> bool:
        """Fold one server message into the local view; return whether it changed anything."""
        self.received.append(message)
        if isinstance(message, Welcome):
            self.connection_id = message.connection_id
            return True
        if isinstance(message, StateSnapshot):
            if message.origin is not None and message.origin == self.connection_id:
                return False
            if message.document_id != self.document_id or message.version < self.version:
                return False
            self.content = message.content
            self.version = message.version
            self.updated_at = message.updated_at
            return True
        if isinstance(message, MembershipUpdate):
            if message.document_id != self.document_id:
                return False
            self.members = list(message.members)
            for gone in set(self._cursors) - set(self.members):
                self._cursors.pop(gone, None)
            for gone in set(self._selections) - set(self.members):
                self._selections.pop(gone, None)
            return True
        if isinstance(message, CursorSignal):
            cursor = message.cursor or {}
            if message.origin is None or "xPct" not in cursor or "yPct" not in cursor:
                return False
            self._cursors[message.origin] = PeerCursor(float(cursor["xPct"]), float(cursor["yPct"]))
            return True
        if isinstance(message, SelectionSignal):
            if message.origin is None:
                return False
            if message.selection is None:
                return self._selections.pop(message.origin, None) is not None
            self._selections[message.origin] = PeerSelection(
                cell_id=message.selection.get("cellId"),
                kind=message.selection.get("kind"),
            )
            return True
        if isinstance(message, Pong):
            self.last_pong = time.monotonic()
            return True
        logger.debug("ignoring unexpected %s from server", message.type.value)
        return False

    def _expire(self, entries: dict[str, Any]) -> None:
        cutoff = time.monotonic() - self._presence_ttl
        for key in [k for k, v in entries.items() if v.seen_at < cutoff]:
            del entries[key]

    @property
    def peer_cursors(self) -> dict[str, PeerCursor]:
        self._expire(self._cursors)
        return dict(self._cursors)

    @property
    def peer_selections(self) -> dict[str, PeerSelection]:
        self._expire(self._selections)
        return dict(self._selections)

    @property
    def peers(self) -> list[str]:
        """Room members other than this client."""
        return [m for m in self.members if m != self.connection_id]

    async def receive_loop(self, task_status: anyio.abc.TaskStatus = anyio.TASK_STATUS_IGNORED) -> None:
        task_status.started()
        try:
            async for data in self._ws:
                try:
                    message = decode_message(data)
                except ProtocolError:
                    logger.warning("dropping malformed frame from server")
                    continue
                self.apply(message)
        except websockets.exceptions.ConnectionClosed:
            logger.debug("server closed the connection")
        finally:
            self._closed = True

    async def wait_for(self, predicate: Callable[[SyncClient], bool], timeout: float = 2.0) -> None:
        """Poll until ``predicate(self)`` holds; raises TimeoutError otherwise."""
        with anyio.fail_after(timeout):
            while not predicate(self):
                await anyio.sleep(0.02)

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._ws.close()
        if self._task_group is not None:
            self._task_group.cancel_scope.cancel()
            await self._task_group.__aexit__(None, None, None)
            self._task_group = None
