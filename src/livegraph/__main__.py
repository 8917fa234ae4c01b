"""Run the collaboration server: ``python -m livegraph``."""

from __future__ import annotations

import logging

import anyio

from livegraph.config import Settings
from livegraph.infra.daemon import SyncDaemon


def main() -> None:
    settings = Settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    daemon = SyncDaemon.from_settings(settings)
    try:
        anyio.run(daemon.run_forever)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
