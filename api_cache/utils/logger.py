"""Logger utility for api-cache.

All components obtain their loggers through :func:`get_logger`, which places
them under a single parent logger (``api_cache`` unless the ``logging``
configuration names a ``parent_logger``). Handlers are attached only to that
parent, so embedding applications can route the output wherever they like.
"""

import logging
import logging.handlers
import sys
from typing import Any, Dict, Optional

DEFAULT_LOGGING_CONFIG: Dict[str, Any] = {
    "level": "INFO",
    "parent_logger": None,
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "date_format": "%Y-%m-%d %H:%M:%S",
    "enable_console": True,
    "enable_file": False,
    "file_path": None,
    "max_file_size": 10485760,  # 10MB
    "backup_count": 5,
}

ROOT_LOGGER_NAME = "api_cache"


class ColorFormatter(logging.Formatter):
    """Formatter that colours the level of console output."""

    COLORS = {
        "DEBUG": "\033[94m",  # Blue
        "INFO": "\033[92m",  # Green
        "WARNING": "\033[93m",  # Yellow
        "ERROR": "\033[91m",  # Red
        "CRITICAL": "\033[95m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record):
        color = self.COLORS.get(record.levelname, self.RESET)
        msg = super().format(record)
        return f"{color}{msg}{self.RESET}"


class LoggerManager:
    """Owns the parent logger configuration and hands out child loggers."""

    def __init__(self):
        self._loggers: Dict[str, logging.Logger] = {}
        self._configured = False
        self._config: Optional[Dict[str, Any]] = None

    def configure(self, config: Dict[str, Any]) -> None:
        """Configure the parent logger.

        Args:
            config: The ``logging`` section of the api-cache configuration
        """
        self._config = {**DEFAULT_LOGGING_CONFIG, **(config or {})}
        self._configured = True
        self._configure_parent_logger()

    def _parent_name(self) -> str:
        return (self._config or {}).get("parent_logger") or ROOT_LOGGER_NAME

    def _configure_parent_logger(self) -> None:
        if not self._config:
            return

        parent_logger = logging.getLogger(self._parent_name())

        # Clear existing handlers to avoid duplicates on reconfigure
        parent_logger.handlers.clear()

        level = getattr(logging, str(self._config.get("level", "INFO")).upper(), logging.INFO)
        parent_logger.setLevel(level)

        log_format = self._config["format"]
        date_format = self._config["date_format"]

        if self._config.get("enable_console", True):
            console_handler = logging.StreamHandler(sys.stdout)
            if sys.stdout.isatty():
                console_handler.setFormatter(ColorFormatter(log_format, date_format))
            else:
                console_handler.setFormatter(logging.Formatter(log_format, date_format))
            parent_logger.addHandler(console_handler)

        if self._config.get("enable_file", False) and self._config.get("file_path"):
            file_handler = logging.handlers.RotatingFileHandler(
                self._config["file_path"],
                maxBytes=self._config.get("max_file_size", 10485760),
                backupCount=self._config.get("backup_count", 5),
            )
            file_handler.setFormatter(logging.Formatter(log_format, date_format))
            parent_logger.addHandler(file_handler)

        parent_logger.propagate = False

    def get_logger(self, name: str) -> logging.Logger:
        """Get or create a child logger of the configured parent.

        Args:
            name: Component name, e.g. ``cache.repository``

        Returns:
            Logger instance named ``<parent>.<name>``
        """
        if not self._configured:
            self.configure({})

        full_name = f"{self._parent_name()}.{name}"
        if full_name not in self._loggers:
            self._loggers[full_name] = logging.getLogger(full_name)
        return self._loggers[full_name]

    def set_level(self, level: str) -> None:
        if self._config:
            self._config["level"] = level
            self._configure_parent_logger()


_logger_manager = LoggerManager()


def configure_logging(config: Dict[str, Any]) -> None:
    """Configure the logging system from the ``logging`` configuration section.

    Call once during application start-up, before components are created.
    """
    _logger_manager.configure(config)


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a component.

    Example:
        logger = get_logger("cache.repository")
        logger.info("Stored %s", key)
    """
    return _logger_manager.get_logger(name)


def set_log_level(level: str) -> None:
    """Change the level of every api-cache logger (DEBUG, INFO, WARNING, ERROR)."""
    _logger_manager.set_level(level)
