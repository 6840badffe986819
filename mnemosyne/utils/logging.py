"""
Logging setup for the Mnemosyne round engine.

Round, surface and API modules log through ``logging.getLogger(__name__)``
under the ``mnemosyne`` namespace. Only the CLI entrypoint and the demo script
call :func:`configure_logging`; an embedding host keeps its own handlers.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
ENGINE_LOGGER = "mnemosyne"


def resolve_level(level: Union[int, str]) -> int:
    """Accept ``logging.DEBUG`` as well as ``"debug"`` from the command line."""

    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"unknown log level {level!r}")
    return resolved


def configure_logging(level: Union[int, str] = logging.INFO, format: Optional[str] = None) -> None:
    """
    Send engine records to stdout unless the host application already set up
    the root logger. The ``mnemosyne`` logger follows ``level`` either way.
    """

    numeric = resolve_level(level)
    logging.getLogger(ENGINE_LOGGER).setLevel(numeric)
    if logging.getLogger().handlers:
        return

    logging.basicConfig(
        level=numeric,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
