from __future__ import annotations

import logging
import os
from pathlib import Path

from concurrent_log_handler import ConcurrentRotatingFileHandler

DEFAULT_LOG_LEVEL_NAME = "INFO"
ALLOWED_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG", "NOTSET"})
DEFAULT_LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"
DEFAULT_LOG_FILE = "logs/debug.log"
DEFAULT_LOG_MAX_FILES_ROTATION = 4
DEFAULT_LOG_MAX_BYTES_ROTATION = 25 * 1024 * 1024

_installed_handlers: dict[str, ConcurrentRotatingFileHandler] = {}


def normalize_log_level_name(log_level: str | None) -> str:
    normalized = str(log_level or "").strip().upper()
    if normalized not in ALLOWED_LOG_LEVELS:
        return DEFAULT_LOG_LEVEL_NAME
    return normalized


def coerce_log_level(log_level: str | None) -> int:
    level = getattr(logging, normalize_log_level_name(log_level), None)
    if not isinstance(level, int):
        return logging.INFO
    return level


def log_file_path(home_dir: str | Path) -> Path:
    return (Path(home_dir).expanduser() / DEFAULT_LOG_FILE).resolve()


def create_rotating_file_handler(*, service_name: str, home_dir: str | Path) -> ConcurrentRotatingFileHandler:
    log_path = log_file_path(home_dir)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    name_width = 33 - len(service_name)
    formatter = logging.Formatter(
        fmt=(
            f"%(asctime)s.%(msecs)03d {service_name} %(name)-{name_width}s: "
            f"%(levelname)-8s %(message)s"
        ),
        datefmt=DEFAULT_LOG_DATE_FORMAT,
    )
    handler = ConcurrentRotatingFileHandler(
        os.fspath(log_path),
        "a",
        maxBytes=DEFAULT_LOG_MAX_BYTES_ROTATION,
        backupCount=DEFAULT_LOG_MAX_FILES_ROTATION,
        use_gzip=False,
    )
    handler.setFormatter(formatter)
    return handler


def initialize_service_logging(
    *,
    service_name: str,
    home_dir: str | Path,
    log_level: str | None,
    logger: logging.Logger,
) -> ConcurrentRotatingFileHandler:
    """Attach the service's rotating file handler to the root logger once.

    Repeated calls only re-apply the level, so the daemon can call this on
    every startup path without stacking handlers.
    """
    handler = _installed_handlers.get(service_name)
    if handler is None:
        handler = create_rotating_file_handler(service_name=service_name, home_dir=home_dir)
        logging.getLogger().addHandler(handler)
        _installed_handlers[service_name] = handler
    effective_level = coerce_log_level(log_level)
    handler.setLevel(effective_level)
    root_logger = logging.getLogger()
    root_logger.setLevel(effective_level)
    logger.setLevel(effective_level)
    return handler


def shutdown_service_logging(service_name: str) -> None:
    handler = _installed_handlers.pop(service_name, None)
    if handler is None:
        return
    logging.getLogger().removeHandler(handler)
    handler.close()
