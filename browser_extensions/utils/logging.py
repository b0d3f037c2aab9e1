"""
Logging helpers for the extension subsystem.

Library modules only create ``logging.getLogger(__name__)`` loggers; handlers
are attached by the application (here, the command line tool) through
:func:`setup_logging`.
"""

import logging
import os
import sys
from typing import Any, MutableMapping, Optional, Tuple
from datetime import datetime

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL
}

ROOT_LOGGER_NAME = "browser_extensions"

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"


class LogFormatter(logging.Formatter):
    """Formatter that colors the level name on terminals."""

    RESET = '\033[0m'

    LEVEL_COLORS = {
        'DEBUG': '\033[34m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[31m\033[1m'
    }

    def __init__(self, colored: bool = True, *args, **kwargs):
        self.colored = colored and sys.platform != 'win32'
        super().__init__(*args, **kwargs)

    def formatMessage(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname) if self.colored else None
        if not color:
            return super().formatMessage(record)

        # Color a copy so other handlers see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().formatMessage(record)


def _level(name: str, fallback: int) -> int:
    return LOG_LEVELS.get(str(name).upper(), fallback)


def setup_logging(log_file: Optional[str] = None,
                  console_level: str = "INFO",
                  file_level: str = "DEBUG",
                  force: bool = False) -> logging.Logger:
    """
    Attach console (and optionally file) handlers to the package logger.

    Args:
        log_file: Path to log file (None for no file logging)
        console_level: Console logging level name
        file_level: File logging level name
        force: Replace handlers attached by an earlier call

    Returns:
        logging.Logger: The ``browser_extensions`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)

    if logger.handlers:
        if not force:
            return logger
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    console = _level(console_level, logging.INFO)
    logger.setLevel(console)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console)
    colored = getattr(console_handler.stream, "isatty", lambda: False)()
    console_handler.setFormatter(LogFormatter(colored=colored, fmt=CONSOLE_FORMAT, datefmt='%H:%M:%S'))
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setLevel(_level(file_level, logging.DEBUG))
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        logger.addHandler(file_handler)
        logger.setLevel(min(console, file_handler.level))

    return logger


def get_default_log_file() -> str:
    """
    Get the default log file path.

    Returns:
        str: ~/.browser_extensions/logs/extensions_YYYY-MM-DD.log
    """
    log_dir = os.path.join(os.path.expanduser("~"), ".browser_extensions", "logs")
    return os.path.join(log_dir, f"extensions_{datetime.now():%Y-%m-%d}.log")


def log_exception(logger: logging.Logger, exception: Exception,
                  message: str = "An exception occurred") -> None:
    """
    Log an exception with its traceback.

    Args:
        logger: Logger to use
        exception: Exception to log
        message: Message to log with the exception
    """
    exc_info = (type(exception), exception, exception.__traceback__)
    logger.error(f"{message}: {exception}", exc_info=exc_info)


class ExtensionLogAdapter(logging.LoggerAdapter):
    """Logger adapter that tags every record with an extension id."""

    def __init__(self, logger: logging.Logger, extension_id: str):
        super().__init__(logger, {"extension_id": extension_id})

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['extension_id']}] {msg}", kwargs
