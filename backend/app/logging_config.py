"""Logging helpers for the leadledger backend.

Route modules get their logger with ``get_logger("leadledger.api.<area>")``
so that API logs share the library's ``leadledger`` namespace and handlers.
"""

import logging

from leadledger.logging_config import LOG_FORMAT

_configured = False


def configure_logging(debug: bool = False) -> None:
    """Attach a console handler to the ``leadledger`` logger once."""
    global _configured
    if _configured:
        return
    root = logging.getLogger("leadledger")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Get a named logger."""
    return logging.getLogger(name)
