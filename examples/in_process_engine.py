"""In-process example: three peers editing one diagram through a SyncEngine.

No sockets involved; each peer just prints what the engine delivers to it.
"""

import anyio

from livegraph import EngineEvent, MemoryDocumentStore, SessionRegistry, SyncEngine


class PrintingPeer:
    def __init__(self, name: str) -> None:
        self._name = name

    @property
    def connection_id(self) -> str:
        return self._name

    def deliver(self, message) -> None:
        print(f"  -> {self._name}: {message.type.value} {message.to_wire()}")


async def main():
    store = MemoryDocumentStore()
    engine = SyncEngine(SessionRegistry(), store)

    @engine.hooks.hook(EngineEvent.PERSISTED)
    def on_persisted(document_id, version, written):
        print(f"[store] {document_id} v{version} persisted={written}")

    async with anyio.create_task_group() as tg:
        await tg.start(engine.persist_loop)

        alice, bob, carol = PrintingPeer("alice"), PrintingPeer("bob"), PrintingPeer("carol")
        for peer in (alice, bob):
            engine.attach(peer)
            print(f"[{peer.connection_id}] joins diagram-1")
            await engine.handle_join("diagram-1", peer.connection_id)

        print("[alice] adds a class node")
        engine.handle_write("diagram-1", {"elements": [{"id": "n1", "kind": "class"}]}, "alice")

        print("[bob] adds an association")
        engine.handle_write(
            "diagram-1",
            {"elements": [{"id": "n1", "kind": "class"}, {"id": "e1", "kind": "association"}]},
            "bob",
        )

        await engine.flush_pending(timeout=1.0)

        print("[carol] joins late and receives the latest snapshot")
        engine.attach(carol)
        await engine.handle_join("diagram-1", "carol")

        print("[bob] disconnects")
        engine.detach("bob")

        engine.stop()

    stored = await store.load("diagram-1")
    print(f"\n[store] diagram-1 is at v{stored.version}: {stored.content}")


if __name__ == "__main__":
    anyio.run(main)
