#!/usr/bin/env python3
"""Create the Qdrant collection used for recording chunks, then print its stats.

Usage:
    python scripts/init_index.py
"""

from __future__ import annotations

import sys

from qdrant_client import QdrantClient

from lecturechat.config import get_settings
from lecturechat.errors import LectureChatError
from lecturechat.logging_config import setup_logging
from lecturechat.retry import RetryPolicy
from lecturechat.vectorstore.index import VectorIndex


def main() -> int:
    settings = get_settings()
    setup_logging(settings.log_level)

    client = QdrantClient(
        url=settings.qdrant_url,
        api_key=settings.qdrant_api_key or None,
        timeout=settings.qdrant_timeout,
    )
    index = VectorIndex.from_settings(settings, client, RetryPolicy.from_settings(settings))

    print(f"Initializing collection '{settings.qdrant_collection}' ({settings.embedding_dimensions} dims)...")
    try:
        created = index.ensure_index()
        stats = index.stats()
    except LectureChatError as exc:
        print(f"Error: {exc.message}")
        return 1

    print("Created." if created else "Already exists.")
    print(f"  points:    {stats.count}")
    print(f"  dimension: {stats.dimension}")
    print(f"  fullness:  {stats.fullness:.1%}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
