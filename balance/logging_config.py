from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_HANDLER_NAME = "balance.console"


def configure_logging(level: str = "INFO") -> None:
    """Send application and uvicorn logs to stderr.

    Idempotent: calling it again only updates the level.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not any(handler.get_name() == _HANDLER_NAME for handler in root_logger.handlers):
        stream_handler = logging.StreamHandler(sys.stderr)
        stream_handler.set_name(_HANDLER_NAME)
        stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root_logger.addHandler(stream_handler)

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True
