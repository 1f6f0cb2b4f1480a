"""One-time script to create the Cartograph constraint and indexes.

Run this once after provisioning a Neo4j instance.  Safe to re-run:
every statement uses ``IF NOT EXISTS``.

Usage::

    python -m cartograph.graph.setup_index

Reads ``CARTOGRAPH_NEO4J_URI``, ``CARTOGRAPH_NEO4J_USER`` and
``CARTOGRAPH_NEO4J_PASSWORD`` from the environment (or a ``.env`` file),
falling back to ``cartograph.neo4j.json``.
"""

from __future__ import annotations

import sys

import structlog
from dotenv import load_dotenv

from cartograph.config import Settings
from cartograph.errors import ConfigurationError, StoreConnectionError
from cartograph.graph.database import GraphStore
from cartograph.logging import setup_logging

logger = structlog.get_logger(__name__)


def main() -> int:
    """Entry point: load env vars, connect and ensure indexes."""
    setup_logging("INFO")
    load_dotenv()

    try:
        store = GraphStore.from_settings(Settings())
    except ConfigurationError as exc:
        print("[ERROR] Invalid Neo4j configuration:")
        for problem in exc.problems:
            print(f"  - {problem}")
        print(
            "  Example:\n"
            "    CARTOGRAPH_NEO4J_URI=neo4j+s://xxxxxxxx.databases.neo4j.io\n"
            "    CARTOGRAPH_NEO4J_USER=neo4j\n"
            "    CARTOGRAPH_NEO4J_PASSWORD=your-password\n"
        )
        return 1

    try:
        with store:
            print(f"Connected to {store.config.connection_uri}")
            names = store.ensure_indexes()
    except StoreConnectionError as exc:
        logger.error("setup_index_failed", error=str(exc))
        print(f"[ERROR] {exc}")
        return 1

    for name in names:
        print(f"[OK] '{name}' ensured.")
    print("\n[DONE] Neo4j setup complete.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
