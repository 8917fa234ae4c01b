"""Tests for network module: protocol, connection handling, client state."""

import time

import anyio
import pytest
import websockets

from livegraph._util.ids import generate_connection_id
from livegraph._util.serialization import pack, unpack
from livegraph.core.engine import SyncEngine
from livegraph.core.registry import SessionRegistry
from livegraph.infra.store import MemoryDocumentStore
from livegraph.net.client import SyncClient
from livegraph.net.connection import Connection, ConnectionHandler
from livegraph.net.protocol import (
    CursorSignal,
    JoinRoom,
    MembershipUpdate,
    MessageType,
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


class FakeWebSocket:
    def __init__(self, frames=(), fail_after=None):
        self.sent = []
        self._frames = list(frames)
        self._fail_after = fail_after

    async def send(self, data):
        if self._fail_after is not None and len(self.sent) >= self._fail_after:
            raise websockets.exceptions.ConnectionClosedOK(None, None)
        self.sent.append(data)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for frame in self._frames:
            yield frame

    def decoded(self):
        return [decode_message(data) for data in self.sent]


class TestProtocol:
    def test_wire_uses_type_tag_and_camel_case(self):
        frame = unpack(
            encode_message(SubmitUpdate(document_id="doc1", content={"elements": []}, origin="c1"))
        )
        assert frame == {
            "type": "submit-update",
            "documentId": "doc1",
            "content": {"elements": []},
            "originConnectionId": "c1",
        }

    def test_snapshot_roundtrip(self):
        snap = StateSnapshot(document_id="d", content={"cells": [1, 2]}, version=4, updated_at=12.5, origin="c9")
        assert decode_message(encode_message(snap)) == snap

    def test_absent_fields_decode_to_none(self):
        message = decode_message(pack({"type": "submit-update", "documentId": "doc1"}))
        assert isinstance(message, SubmitUpdate)
        assert message.content is None
        assert message.origin is None

    def test_nil_selection_stays_on_wire(self):
        frame = unpack(encode_message(SelectionSignal(document_id="d", selection=None, origin="c1")))
        assert "selection" in frame and frame["selection"] is None
        decoded = decode_message(pack(frame))
        assert isinstance(decoded, SelectionSignal)
        assert decoded.selection is None

    def test_membership_defaults(self):
        update = decode_message(pack({"type": "membership-update", "documentId": "d"}))
        assert update == MembershipUpdate(document_id="d", members=[], count=0)

    def test_every_type_has_a_message_class(self):
        for mt in MessageType:
            assert decode_message(pack({"type": mt.value})).type == mt

    def test_decode_rejects_garbage(self):
        with pytest.raises(ProtocolError):
            decode_message(b"not-msgpack")

    def test_decode_rejects_non_map(self):
        with pytest.raises(ProtocolError):
            decode_message(pack(["join-room", "doc"]))

    def test_decode_rejects_unknown_type(self):
        with pytest.raises(ProtocolError):
            decode_message(pack({"type": "graph:nuke"}))

    def test_decode_rejects_wrong_field_type(self):
        with pytest.raises(ProtocolError):
            decode_message(pack({"type": "join-room", "documentId": 42}))

    def test_decode_rejects_text_frames(self):
        with pytest.raises(ProtocolError):
            decode_message('{"type": "join-room"}')

    def test_protocol_error_is_value_error(self):
        assert issubclass(ProtocolError, ValueError)


class TestConnection:
    @pytest.mark.anyio
    async def test_send_loop_preserves_order(self):
        ws = FakeWebSocket()
        conn = Connection(ws, "c1")
        conn.deliver(Welcome(connection_id="c1"))
        conn.deliver(StateSnapshot(document_id="d", content="a", version=1, updated_at=1.0))
        conn.deliver(StateSnapshot(document_id="d", content="b", version=2, updated_at=2.0))
        conn.close()

        await conn.send_loop()

        assert [type(m) for m in ws.decoded()] == [Welcome, StateSnapshot, StateSnapshot]
        assert [m.version for m in ws.decoded()[1:]] == [1, 2]

    @pytest.mark.anyio
    async def test_deliver_after_close_is_dropped(self):
        ws = FakeWebSocket()
        conn = Connection(ws, "c1")
        conn.close()
        conn.deliver(Pong())
        await conn.send_loop()
        assert ws.sent == []

    @pytest.mark.anyio
    async def test_full_outbox_drops_message(self):
        ws = FakeWebSocket()
        conn = Connection(ws, "c1", outbox_size=1)
        conn.deliver(Pong())
        conn.deliver(Ping())  # logged and dropped, never raises
        conn.close()
        await conn.send_loop()
        assert ws.decoded() == [Pong()]

    @pytest.mark.anyio
    async def test_send_loop_stops_when_socket_closes(self):
        ws = FakeWebSocket(fail_after=1)
        conn = Connection(ws, "c1")
        for _ in range(3):
            conn.deliver(Pong())
        conn.close()
        with anyio.fail_after(1):
            await conn.send_loop()
        assert len(ws.sent) == 1

    def test_generated_connection_ids_are_unique(self):
        ids = {generate_connection_id() for _ in range(50)}
        assert len(ids) == 50
        assert all(len(cid) == 16 for cid in ids)


class TestConnectionHandler:
    @staticmethod
    def _setup(frames, connection_id="c1"):
        engine = SyncEngine(SessionRegistry(), MemoryDocumentStore())
        ws = FakeWebSocket(frames)
        conn = Connection(ws, connection_id)
        engine.attach(conn)
        return engine, ws, conn, ConnectionHandler(engine, conn)

    @pytest.mark.anyio
    async def test_dispatches_join_write_and_ping(self):
        frames = [
            encode_message(JoinRoom(document_id="doc1")),
            encode_message(SubmitUpdate(document_id="doc1", content={"elements": []})),
            encode_message(Ping()),
        ]
        engine, ws, conn, handler = self._setup(frames)

        await handler.receive_loop(ws)
        conn.close()
        await conn.send_loop()

        assert engine.registry.members("doc1") == ["c1"]
        assert engine.registry.get_cache("doc1").version == 1
        sent = ws.decoded()
        assert isinstance(sent[0], MembershipUpdate)
        assert isinstance(sent[-1], Pong)
        # the writer is never sent its own snapshot
        assert not any(isinstance(m, StateSnapshot) for m in sent)

    @pytest.mark.anyio
    async def test_malformed_frames_do_not_stop_the_loop(self):
        frames = [
            b"\xc1garbage",
            pack({"type": "no-such-type"}),
            "text frame",
            encode_message(JoinRoom(document_id="doc1")),
        ]
        engine, ws, conn, handler = self._setup(frames)
        await handler.receive_loop(ws)
        assert engine.registry.members("doc1") == ["c1"]

    @pytest.mark.anyio
    async def test_server_only_messages_are_ignored(self):
        frames = [
            encode_message(StateSnapshot(document_id="doc1", content="forged", version=99, updated_at=0.0)),
            encode_message(Welcome(connection_id="someone-else")),
        ]
        engine, ws, conn, handler = self._setup(frames)
        await handler.receive_loop(ws)
        assert engine.registry.get_cache("doc1") is None

    @pytest.mark.anyio
    async def test_presence_relay_fills_in_origin(self):
        engine = SyncEngine(SessionRegistry(), MemoryDocumentStore())
        ws1, ws2 = FakeWebSocket(), FakeWebSocket()
        c1, c2 = Connection(ws1, "c1"), Connection(ws2, "c2")
        engine.attach(c1)
        engine.attach(c2)
        h1 = ConnectionHandler(engine, c1)
        h2 = ConnectionHandler(engine, c2)
        await h1.handle_frame(encode_message(JoinRoom(document_id="doc1")))
        await h2.handle_frame(encode_message(JoinRoom(document_id="doc1")))

        await h1.handle_frame(
            encode_message(CursorSignal(document_id="doc1", cursor={"xPct": 50.0, "yPct": 5.0}))
        )
        c2.close()
        await c2.send_loop()

        cursors = [m for m in ws2.decoded() if isinstance(m, CursorSignal)]
        assert cursors == [CursorSignal(document_id="doc1", cursor={"xPct": 50.0, "yPct": 5.0}, origin="c1")]


class TestSyncClientState:
    @staticmethod
    def _client(**kwargs):
        client = SyncClient(ws=None, uri="ws://unused", **kwargs)
        client.apply(Welcome(connection_id="me"))
        client.document_id = "doc1"
        return client

    def test_welcome_sets_identity(self):
        assert self._client().connection_id == "me"

    def test_own_echo_is_ignored(self):
        client = self._client()
        echo = StateSnapshot(document_id="doc1", content="mine", version=3, updated_at=1.0, origin="me")
        assert client.apply(echo) is False
        assert client.content is None
        assert client.version == 0

    def test_remote_snapshot_is_applied(self):
        client = self._client()
        snap = StateSnapshot(document_id="doc1", content={"elements": ["X"]}, version=2, updated_at=5.0, origin="peer")
        assert client.apply(snap) is True
        assert client.content == {"elements": ["X"]}
        assert client.version == 2

    def test_older_snapshot_is_ignored(self):
        client = self._client()
        client.apply(StateSnapshot(document_id="doc1", content="new", version=5, updated_at=1.0))
        assert client.apply(StateSnapshot(document_id="doc1", content="old", version=4, updated_at=1.0)) is False
        assert client.content == "new"

    def test_snapshot_for_other_document_is_ignored(self):
        client = self._client()
        assert client.apply(StateSnapshot(document_id="other", content="x", version=1, updated_at=1.0)) is False

    def test_cursor_tracking_and_expiry(self):
        client = self._client(presence_ttl=0.01)
        client.apply(CursorSignal(document_id="doc1", cursor={"xPct": 10, "yPct": 90}, origin="peer"))
        cursor = client.peer_cursors["peer"]
        assert (cursor.x_pct, cursor.y_pct) == (10.0, 90.0)
        time.sleep(0.02)
        assert client.peer_cursors == {}

    def test_selection_cleared_by_nil(self):
        client = self._client()
        client.apply(SelectionSignal(document_id="doc1", selection={"cellId": "n1", "kind": "class"}, origin="peer"))
        assert client.peer_selections["peer"].cell_id == "n1"
        assert client.apply(SelectionSignal(document_id="doc1", selection=None, origin="peer")) is True
        assert client.peer_selections == {}

    def test_membership_prunes_departed_peers(self):
        client = self._client()
        client.apply(MembershipUpdate(document_id="doc1", members=["me", "a", "b"], count=3))
        client.apply(CursorSignal(document_id="doc1", cursor={"xPct": 1, "yPct": 1}, origin="a"))
        client.apply(CursorSignal(document_id="doc1", cursor={"xPct": 2, "yPct": 2}, origin="b"))

        client.apply(MembershipUpdate(document_id="doc1", members=["me", "b"], count=2))

        assert client.peers == ["b"]
        assert set(client.peer_cursors) == {"b"}

    @pytest.mark.anyio
    async def test_version_catches_up_after_own_submit(self):
        ws = FakeWebSocket()
        client = SyncClient(ws=ws, uri="ws://unused")
        client.apply(Welcome(connection_id="me"))
        await client.join("doc1")
        client.apply(StateSnapshot(document_id="doc1", content="base", version=1, updated_at=1.0, origin="peer"))

        await client.submit("mine")
        assert (client.content, client.version) == ("mine", 1)

        # server numbered our write v2; the peer's next write is v3
        client.apply(StateSnapshot(document_id="doc1", content="theirs", version=3, updated_at=3.0, origin="peer"))
        assert (client.content, client.version) == ("theirs", 3)
        assert isinstance(ws.decoded()[-1], SubmitUpdate)

    @pytest.mark.anyio
    async def test_sending_requires_a_room(self):
        client = SyncClient(ws=FakeWebSocket(), uri="ws://unused")
        with pytest.raises(RuntimeError):
            await client.submit({"elements": []})
