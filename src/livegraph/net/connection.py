"""Connection + ConnectionHandler — one websocket bridged to the SyncEngine."""

from __future__ import annotations

import logging
from typing import Any

import anyio
import websockets

from livegraph._util.ids import generate_connection_id
from livegraph.core.engine import SyncEngine
from livegraph.net.protocol import (
    CursorSignal,
    JoinRoom,
    Message,
    Ping,
    Pong,
    ProtocolError,
    SelectionSignal,
    SubmitUpdate,
    decode_message,
    encode_message,
)

logger = logging.getLogger(__name__)


class Connection:
    """Outbound side of one client connection.

    ``deliver`` only enqueues, so the engine can fan out without suspending;
    ``send_loop`` writes the queue to the socket in order.
    """

    def __init__(self, websocket: Any, connection_id: str | None = None, *, outbox_size: int = 256) -> None:
        self._ws = websocket
        self._connection_id = connection_id or generate_connection_id()
        self._outbox_send, self._outbox_recv = anyio.create_memory_object_stream[Message](outbox_size)

    @property
    def connection_id(self) -> str:
        return self._connection_id

    def deliver(self, message: Message) -> None:
        try:
            self._outbox_send.send_nowait(message)
        except anyio.WouldBlock:
            logger.warning("outbox full for %s; dropping %s", self._connection_id, message.type.value)
        except (anyio.ClosedResourceError, anyio.BrokenResourceError):
            logger.debug("connection %s closed; dropping %s", self._connection_id, message.type.value)

    async def send_loop(self, task_status: anyio.abc.TaskStatus = anyio.TASK_STATUS_IGNORED) -> None:
        task_status.started()
        async with self._outbox_recv:
            async for message in self._outbox_recv:
                try:
                    await self._ws.send(encode_message(message))
                except websockets.exceptions.ConnectionClosed:
                    logger.debug("send to %s failed; connection closed", self._connection_id)
                    break

    def close(self) -> None:
        """Stop accepting messages; the send loop flushes what is queued and exits."""
        self._outbox_send.close()


class ConnectionHandler:
    """Translates inbound frames into engine operations for one connection."""

    def __init__(self, engine: SyncEngine, connection: Connection) -> None:
        self._engine = engine
        self._connection = connection

    @property
    def connection_id(self) -> str:
        return self._connection.connection_id

    async def handle_frame(self, data: bytes | str) -> None:
        try:
            message = decode_message(data)
        except ProtocolError as exc:
            logger.warning("dropping malformed frame from %s: %s", self.connection_id, exc)
            return
        self._engine.presence.touch(self.connection_id)
        try:
            await self.dispatch(message)
        except Exception:
            logger.exception("failed to handle %s from %s", message.type.value, self.connection_id)

    async def dispatch(self, message: Message) -> None:
        cid = self.connection_id
        if isinstance(message, JoinRoom):
            await self._engine.handle_join(message.document_id, cid)
        elif isinstance(message, SubmitUpdate):
            self._engine.handle_write(message.document_id, message.content, cid, origin=message.origin)
        elif isinstance(message, (CursorSignal, SelectionSignal)):
            self._engine.handle_presence(message, cid)
        elif isinstance(message, Ping):
            self._connection.deliver(Pong())
        else:
            logger.warning("dropping server-only message %s from %s", message.type.value, cid)

    async def receive_loop(self, websocket: Any) -> None:
        """Dispatch frames until the client disconnects."""
        try:
            async for data in websocket:
                await self.handle_frame(data)
        except websockets.exceptions.ConnectionClosedError:
            logger.debug("connection %s closed abnormally", self.connection_id)
