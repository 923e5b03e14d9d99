from __future__ import annotations

import logging
import sys


def setup_logging(level: str | None = None) -> None:
    """Configure application-wide logging.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR). Defaults to INFO.
    """
    log_level = getattr(logging, (level or "INFO").upper(), logging.INFO)

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Third-party clients are chatty at INFO
    for noisy in ("httpx", "httpcore", "qdrant_client", "openai", "anthropic", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger("lecturechat").setLevel(log_level)
    logging.getLogger(__name__).info(
        "Logging configured at %s level", logging.getLevelName(log_level)
    )
