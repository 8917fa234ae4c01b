"""PresenceTracker — live connections, membership notices, and signal fan-out."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from livegraph.core.registry import SessionRegistry
from livegraph.core.types import ConnectionId, DocumentId, Peer
from livegraph.net.protocol import MembershipUpdate, Message

logger = logging.getLogger(__name__)


@dataclass
class PeerInfo:
    peer: Peer
    connected_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.time)


class PresenceTracker:
    """Tracks connected peers and fans messages out to the members of a room.

    Room membership itself lives in the SessionRegistry; the tracker resolves
    member IDs to deliverable peers.
    """

    def __init__(self, registry: SessionRegistry) -> None:
        self._registry = registry
        self._peers: dict[ConnectionId, PeerInfo] = {}

    def attach(self, peer: Peer) -> PeerInfo:
        info = PeerInfo(peer=peer)
        self._peers[peer.connection_id] = info
        return info

    def detach(self, connection_id: ConnectionId) -> None:
        self._peers.pop(connection_id, None)

    def get_peer(self, connection_id: ConnectionId) -> PeerInfo | None:
        return self._peers.get(connection_id)

    def touch(self, connection_id: ConnectionId) -> None:
        info = self._peers.get(connection_id)
        if info is not None:
            info.last_seen = time.time()
        else:
            logger.debug("activity from unknown connection %s", connection_id)

    @property
    def connection_ids(self) -> list[ConnectionId]:
        return list(self._peers)

    @property
    def connection_count(self) -> int:
        return len(self._peers)

    def idle_connections(self, timeout: float) -> list[ConnectionId]:
        """Return connections that sent nothing within ``timeout`` seconds."""
        now = time.time()
        return [cid for cid, info in self._peers.items() if now - info.last_seen > timeout]

    def peers_in(self, document_id: DocumentId, exclude: ConnectionId | None = None) -> list[Peer]:
        peers = []
        for cid in self._registry.members(document_id):
            if cid == exclude:
                continue
            info = self._peers.get(cid)
            if info is not None:
                peers.append(info.peer)
        return peers

    def membership(self, document_id: DocumentId) -> MembershipUpdate:
        members = self._registry.members(document_id)
        return MembershipUpdate(document_id=document_id, members=members, count=len(members))

    def announce(self, document_id: DocumentId) -> MembershipUpdate:
        """Send the current membership of a room to every member of it."""
        update = self.membership(document_id)
        self.relay(document_id, update)
        return update

    def relay(self, document_id: DocumentId, message: Message, exclude: ConnectionId | None = None) -> int:
        """Deliver a message to room members other than ``exclude``; return the fan-out."""
        peers = self.peers_in(document_id, exclude=exclude)
        for peer in peers:
            peer.deliver(message)
        return len(peers)
