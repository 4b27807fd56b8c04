from __future__ import annotations

import logging
import sys

from pythonjsonlogger import jsonlogger


PACKAGE_LOGGER = "contextgraph"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a structured JSON handler to the package logger.

    Library modules only call `logging.getLogger(__name__)`; applications opt
    in to output by calling this once.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level.upper() if isinstance(level, str) else level)

    # Prevent duplicate handlers if the logger is already configured
    if any(getattr(h, "_contextgraph", False) for h in logger.handlers):
        return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    handler._contextgraph = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    return logger
