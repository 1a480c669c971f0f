"""DiscoClaude logging configuration.

All modules log through the standard library under the ``discoclaude``
namespace. ``setup_logging`` is called once by the daemon; tests never call it.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from typing import Optional

from discoclaude.constants import DEFAULT_LOG_LEVEL

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
_NOISY_LOGGERS = ("discord", "git")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure DiscoClaude logging.

    Args:
        level: Optional override for `DISCOCLAUDE_LOG_LEVEL`.
    """
    if level:
        os.environ["DISCOCLAUDE_LOG_LEVEL"] = level

    resolved = os.getenv("DISCOCLAUDE_LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()
    root = logging.getLogger("discoclaude")
    root.setLevel(resolved)
    root.handlers.clear()
    root.propagate = False

    formatter = logging.Formatter(_LOG_FORMAT)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    log_file = os.getenv("DISCOCLAUDE_LOG_FILE")
    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.expanduser(log_file), maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
