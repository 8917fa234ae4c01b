"""SyncServer — websocket endpoint that hands each client to a ConnectionHandler."""

from __future__ import annotations

import logging
from typing import Any

import anyio
import websockets.asyncio.server

from livegraph.core.engine import SyncEngine
from livegraph.net.connection import Connection, ConnectionHandler
from livegraph.net.protocol import Welcome

logger = logging.getLogger(__name__)


class SyncServer:
    """Accepts websocket clients; every connection gets its own outbox and handler."""

    def __init__(
        self,
        engine: SyncEngine,
        host: str = "localhost",
        port: int = 3001,
        *,
        max_size: int | None = 10 * 1024 * 1024,
        outbox_size: int = 256,
    ) -> None:
        self.host = host
        self.port = port
        self.max_size = max_size
        self.outbox_size = outbox_size
        self._engine = engine
        self._connections: dict[str, Connection] = {}
        self._server: Any = None

    async def _handler(self, websocket: Any) -> None:
        connection = Connection(websocket, outbox_size=self.outbox_size)
        cid = connection.connection_id
        handler = ConnectionHandler(self._engine, connection)
        self._engine.attach(connection)
        self._connections[cid] = connection
        connection.deliver(Welcome(connection_id=cid))
        logger.info("client connected: %s", cid)
        try:
            async with anyio.create_task_group() as tg:
                await tg.start(connection.send_loop)
                try:
                    await handler.receive_loop(websocket)
                finally:
                    self._engine.detach(cid)
                    self._connections.pop(cid, None)
                    connection.close()
        finally:
            logger.info("client disconnected: %s", cid)

    async def start(self) -> None:
        self._server = await websockets.asyncio.server.serve(
            self._handler,
            self.host,
            self.port,
            max_size=self.max_size,
        )
        if self.port == 0:
            self.port = self._server.sockets[0].getsockname()[1]
        logger.info("sync server listening on ws://%s:%s", self.host, self.port)

    async def stop(self) -> None:
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    @property
    def client_count(self) -> int:
        return len(self._connections)
