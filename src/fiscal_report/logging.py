"""Logging setup shared by the web app and the worker."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

_FORMAT = "%(asctime)s %(levelname)-8s %(name)s — %(message)s"

# Third-party loggers that are noisy at INFO
_QUIET_LOGGERS = (
    "azure.core.pipeline.policies.http_logging_policy",
    "azure.cosmos",
    "azure.servicebus",
    "httpx",
    "uamqp",
)


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure the root logger with a console handler and optional file handler."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(_FORMAT)

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
