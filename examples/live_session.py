"""Networked example: two editors sharing a diagram through a SyncDaemon.

Run this script to see snapshots, cursors and membership flow through the
central server, then a late joiner pick up the latest state.
"""

import socket
import tempfile

import anyio

from livegraph import SyncClient, SyncDaemon
from livegraph.infra.sql_store import SQLDocumentStore


def _free_port() -> int:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


async def run_editor(name: str, uri: str, element: str, expected: set[str], delay: float):
    """Join the diagram, add one element, and wait to see everyone's elements."""
    await anyio.sleep(delay)  # stagger connections

    client = await SyncClient.connect(uri)
    await client.join("diagram-1")
    print(f"[{name}] connected as {client.connection_id}")

    await client.wait_for(lambda c: len(c.members) == 2, timeout=5)
    await client.send_cursor(10.0 if name == "alice" else 90.0, 50.0)

    # add our element on top of whatever we have seen so far
    elements = list((client.content or {}).get("elements", []))
    elements.append(element)
    await client.submit({"elements": elements})
    print(f"[{name}] submitted {elements}")

    try:
        await client.wait_for(lambda c: expected.issubset((c.content or {}).get("elements", [])), timeout=3)
        print(f"[{name}] sees everyone's elements at v{client.version}")
    except TimeoutError:
        # last writer wins: an edit based on a stale snapshot replaces the other one
        print(f"[{name}] kept its own write, last seen remote state: {client.content}")
    print(f"[{name}] peer cursors: {client.peer_cursors}")
    await client.close()


async def main():
    with tempfile.TemporaryDirectory() as tmpdir:
        port = _free_port()
        store = SQLDocumentStore(f"sqlite+aiosqlite:///{tmpdir}/livegraph.db")
        daemon = SyncDaemon(host="127.0.0.1", port=port, store=store)
        await daemon.start()
        uri = f"ws://127.0.0.1:{port}"
        print(f"SyncDaemon running on {uri}")

        try:
            async with anyio.create_task_group() as tg:
                expected = {"class:Order", "class:Customer"}
                tg.start_soon(run_editor, "alice", uri, "class:Order", expected, 0.1)
                tg.start_soon(run_editor, "bob", uri, "class:Customer", expected, 0.3)

            late = await SyncClient.connect(uri)
            await late.join("diagram-1")
            await late.wait_for(lambda c: c.version > 0)
            print(f"\n[carol] late join got v{late.version}: {late.content}")
            await late.close()

            await daemon.engine.flush_pending(timeout=2.0)
            stored = await store.load("diagram-1")
            print(f"[daemon] stored v{stored.version}: {stored.content}")
        finally:
            await daemon.stop()
            print("SyncDaemon stopped")


if __name__ == "__main__":
    anyio.run(main)
