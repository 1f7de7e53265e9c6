"""
Logging for the flowhouse service.

One stdout line per event, `time | level | module | message`.  Request-level
messages carry their context as `key=value` pairs:
  * query.builder   WARNING  dropped field (field, clause, reason) + the SQL at INFO
  * db.executor     INFO     statement size, query tag, row count, elapsed ms
  * query.service   INFO     rows, timestamps, dropped fields, latency_ms
  * api.routers     WARNING  rejected requests and client disconnects

The level comes from `Settings.log_level` (env `LOG_LEVEL`).
"""
from __future__ import annotations

import logging
import sys

from flowhouse.core.config import get_settings


def get_logger(name: str) -> logging.Logger:
    settings = get_settings()
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        fmt = logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(fmt)
        logger.addHandler(handler)
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    return logger
