from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

from offline_resilience.config.models import LoggingSettings

_FORMAT = "[%(asctime)s][%(levelname)s][%(name)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_ACCESS_LOGGER = "aiohttp.access"


def _resolve_level(name: str) -> int:
    level = logging.getLevelNamesMapping().get(name.strip().upper())
    if level is None:
        raise ValueError(f"Invalid logging level: {name}")
    return level


def _file_handler(settings: LoggingSettings, formatter: logging.Formatter) -> Optional[logging.Handler]:
    file_path = settings.file.path.strip()
    if not file_path:
        return None
    path = Path(file_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(path),
        when="midnight",
        interval=1,
        backupCount=settings.file.rotation.backup_count,
        encoding="utf-8",
    )
    handler.suffix = "%Y-%m-%d"
    handler.setFormatter(formatter)
    return handler


def init_logging(settings: LoggingSettings) -> None:
    """
    Configure the root logger for the proxy.

    Console output always, plus a daily rotated file when `file.path` is set. The
    aiohttp access log stays at WARNING unless `access_log` is enabled, since it
    would otherwise emit one line per proxied request. `loggers` overrides the
    level of individual loggers.
    """
    level = _resolve_level(settings.level)
    overrides = {name: _resolve_level(value) for name, value in settings.loggers.items()}

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    access_level = logging.INFO if settings.access_log else max(level, logging.WARNING)
    logging.getLogger(_ACCESS_LOGGER).setLevel(access_level)
    for name, logger_level in overrides.items():
        logging.getLogger(name).setLevel(logger_level)

    try:
        file_handler = _file_handler(settings, formatter)
    except OSError:
        root_logger.error("File logging handler failed to initialize. path=%s", settings.file.path, exc_info=True)
        return
    if file_handler is not None:
        root_logger.addHandler(file_handler)


__all__ = ["init_logging"]
