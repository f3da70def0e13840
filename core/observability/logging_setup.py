"""
Portal sync logging setup.

Engine modules log through ``logging.getLogger(__name__)``; everything
lives under the ``core`` logger tree so the ``debugLogging`` option can
switch the whole engine to DEBUG without touching the host's loggers.
"""
from __future__ import annotations
from typing import Optional
import logging
import os

ENGINE_LOGGER = "core"

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root handler for a standalone host process."""
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)


def enable_debug_logging(enabled: bool = True) -> None:
    """Raise (or reset) the engine logger tree to DEBUG."""
    logging.getLogger(ENGINE_LOGGER).setLevel(logging.DEBUG if enabled else logging.NOTSET)
