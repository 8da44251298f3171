"""Logging infrastructure for the application.

Provides centralized logger configuration with file and console handlers.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pagescribe.config.config_loader import PROJECT_ROOT
from pagescribe.config.service import get_config_service


def _resolve_log_file() -> Path:
    try:
        paths_config = get_config_service().get_paths_config()
        logs_dir_value = paths_config.get("general", {}).get("logs_dir")
    except (FileNotFoundError, ValueError):
        logs_dir_value = None

    if not logs_dir_value:
        return PROJECT_ROOT / "logs" / "application.log"
    logs_path = Path(logs_dir_value)
    if not logs_path.is_absolute():
        logs_path = (PROJECT_ROOT / logs_path).resolve()
    if logs_path.suffix == ".log":
        return logs_path
    return logs_path / "application.log"


def setup_logger(name: str) -> logging.Logger:
    """
    Set up and return a logger with file and console handlers.

    Logs are written to the configured logs directory (from paths_config.yaml)
    or PROJECT_ROOT/logs as a fallback. The console handler only shows
    warnings and errors unless PAGESCRIBE_DEBUG is set, while the file
    handler captures all INFO level and above.

    Args:
        name: Name of the logger (typically __name__ from the calling module).

    Returns:
        Configured logger instance.
    """
    log_file = _resolve_log_file()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    debug = os.environ.get("PAGESCRIBE_DEBUG", "").lower() in ("1", "true", "yes")
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    if not logger.handlers:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        formatter = logging.Formatter(
            "%(asctime)s - %(levelname)s - %(message)s"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
        console_handler = logging.StreamHandler()
        console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
        console_formatter = logging.Formatter("%(levelname)s: %(message)s")
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)
    return logger
