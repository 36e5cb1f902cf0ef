from __future__ import annotations

import logging
import os

LOG_ENV_VAR = "RELEASE_STATS_LOG"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"

_configured = False


def resolve_level(value: str | None) -> int:
    name = (value or "").strip().upper() or "INFO"
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    if isinstance(level, int):
        return level
    return logging.INFO


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once; the level defaults to $RELEASE_STATS_LOG."""
    global _configured
    if _configured:
        return
    _configured = True
    if level is None:
        level = os.environ.get(LOG_ENV_VAR)
    logging.basicConfig(level=resolve_level(level), format=LOG_FORMAT, datefmt=LOG_DATEFMT)
