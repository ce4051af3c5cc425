"""Logging setup for chaldeploy.

CHALDEPLOY_LOGGING_FORMAT=text for local runs, =json for the cluster's log
shipper. Per-team fields passed via `extra` (team_id, resource_name, event)
end up as top-level JSON keys.
"""

import logging
import sys
import time

from pythonjsonlogger import json as jsonlogger
from pythonjsonlogger.core import RESERVED_ATTRS

from chaldeploy.config import LoggingConfig

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FIELDS = "%(levelname)s %(name)s %(message)s %(filename)s %(lineno)d"


class DuplicateSuppressFilter(logging.Filter):
    """Drop repeats of the same line for the same team within a window.

    Teams retrying create/destroy in a loop produce identical lines; ERROR
    and above are never suppressed.
    """

    def __init__(self, window_seconds: float = 5.0, max_keys: int = 1000, name: str = "") -> None:
        super().__init__(name)
        self._window = window_seconds
        self._max_keys = max_keys
        self._seen: dict[str, float] = {}

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        team_id = getattr(record, "team_id", "")
        key = f"{record.name}:{record.lineno}:{team_id}:{record.getMessage()}"
        now = time.monotonic()
        if now - self._seen.get(key, 0.0) < self._window:
            return False
        self._seen[key] = now

        if len(self._seen) > self._max_keys:
            for stale in sorted(self._seen, key=self._seen.__getitem__)[: self._max_keys // 10]:
                del self._seen[stale]
        return True


def json_formatter(config: LoggingConfig) -> jsonlogger.JsonFormatter:
    """One object per line: timestamp, level, logger, service, source, extras."""
    return jsonlogger.JsonFormatter(
        JSON_FIELDS,
        rename_fields={"levelname": "level", "name": "logger"},
        static_fields={"service": config.service_name},
        # uvicorn attaches an ANSI copy of every message
        reserved_attrs=[*RESERVED_ATTRS, "color_message"],
        timestamp=True,
    )


def setup_logging(config: LoggingConfig) -> None:
    """Install a single stdout handler on root and route uvicorn through it."""
    level = getattr(logging, config.level.upper(), logging.INFO)

    if config.format == "json":
        formatter: logging.Formatter = json_formatter(config)
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    handler.addFilter(DuplicateSuppressFilter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = False
        uv_logger.addHandler(handler)
    logging.getLogger("uvicorn.access").disabled = True

    # kubernetes client logs every request body at DEBUG
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
