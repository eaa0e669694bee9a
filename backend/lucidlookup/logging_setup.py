from __future__ import annotations

import logging
import sys

_INITIALIZED: bool = False

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def init_logging(level: str = "INFO") -> None:
    """Configure the root logger once for console output."""
    global _INITIALIZED
    if _INITIALIZED:
        return

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    if not root_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(log_level)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(handler)

    # httpx logs every request at INFO, including the token query parameter.
    logging.getLogger("httpx").setLevel(max(log_level, logging.WARNING))

    _INITIALIZED = True
