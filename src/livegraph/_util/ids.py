"""Connection ID generation utilities."""

from __future__ import annotations

import os


def generate_connection_id() -> str:
    """Generate a random 64-bit connection ID rendered as 16 hex characters."""
    return os.urandom(8).hex()
