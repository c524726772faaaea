from __future__ import annotations

import logging

from pushrelay.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
# Libraries that are noisy at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "arq.jobs")


def configure_logging(level: str | None = None) -> None:
    # Configure the root logger once so API, worker and scripts share one format.
    resolved = (level or get_settings().log_level or "INFO").upper()
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(resolved)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.getLevelName(resolved), logging.WARNING))
