"""
Service-tagged logging for the dashboard backend.

Every module asks for a logger by service name (``get_logger("Database")``)
and the formatter prints that name as a fixed-width tag, so the output of
the branch fan-out, cache and API layers can be read side by side.
"""

import logging
import sys
from typing import Optional

_LOGGER_PREFIX = "maintdash"
_FORMAT = "%(asctime)s %(levelname)-7s %(service_tag)s %(message)s"

__all__ = ["ServiceFormatter", "get_logger", "configure_logging"]


class ServiceFormatter(logging.Formatter):
    """Prefix each line with ``[Service]`` taken from the logger name."""

    def format(self, record: logging.LogRecord) -> str:
        service = record.name.rsplit(".", 1)[-1] if record.name.startswith(_LOGGER_PREFIX) else record.name
        record.service_tag = f"[{service}]".ljust(15)
        return super().format(record)


def get_logger(service: str) -> logging.Logger:
    """Get a logger under the maintdash namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{service}")


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Install a single stream handler on the maintdash root logger.

    Calling it again replaces the handler rather than stacking a second one.
    """
    from maintdash.config import LOG_LEVEL

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel((level or LOG_LEVEL).upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ServiceFormatter(_FORMAT))
    root.addHandler(handler)
    root.propagate = False
    return root
