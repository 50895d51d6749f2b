"""Logging configuration for the monitor process."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from .config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(config: LoggingConfig) -> None:
    """Install console and rotating file handlers on the root logger."""
    root = logging.getLogger()
    root.setLevel(config.level.upper())
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    for handler in list(root.handlers):
        if getattr(handler, "_ctemonitor", False):
            root.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_path,
                maxBytes=config.max_bytes,
                backupCount=config.backup_count,
                encoding="utf-8",
            )
        )

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._ctemonitor = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    logging.getLogger("apscheduler").setLevel(logging.WARNING)
