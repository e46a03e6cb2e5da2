"""
Logging setup for vcard-import.

Console messages go to stderr so they never mix with command output. Each
day's runs also append to a dated log file at DEBUG level. Imports run on
background threads, so file records carry the thread name, and messages
about one vCard source are prefixed with the source's name.

Environment:
    VCARD_IMPORT_DEBUG      "1", "true" or "yes" forces DEBUG
    VCARD_IMPORT_LOG_LEVEL  level name, default INFO
    VCARD_IMPORT_LOG_FILE   explicit log file, or "none" to disable it
"""

import logging
import os
import sys
from collections.abc import MutableMapping
from datetime import date
from pathlib import Path
from typing import Any, Optional, TextIO

from vcard_import.utils.paths import resolve_config_dir

LOGGER_NAME = "vcard_import"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_CONSOLE_FORMAT = (
    "%(asctime)s %(levelname)s [%(threadName)s] %(name)s:%(lineno)d: %(message)s"
)
FILE_FORMAT = "%(asctime)s %(levelname)-8s [%(threadName)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENV_LOG_LEVEL = "VCARD_IMPORT_LOG_LEVEL"
ENV_DEBUG = "VCARD_IMPORT_DEBUG"
ENV_LOG_FILE = "VCARD_IMPORT_LOG_FILE"

LOG_DIR_NAME = "logs"
LOG_FILE_PREFIX = "vcard_import_"
DEFAULT_LOG_RETENTION = 10

# urllib3 logs one line per connection and request; shown only when verbose
HTTP_LOGGER_NAMES = ("urllib3",)

_DISABLED_LOG_FILE_VALUES = ("none", "disabled", "off")


class ColoredFormatter(logging.Formatter):
    """Colors the level name when the stream is an ANSI capable terminal."""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        stream: Optional[TextIO] = None,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = stream_supports_color(stream if stream is not None else sys.stderr)

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelname)
        if not self.use_colors or color is None:
            return super().format(record)

        # Other handlers share the record
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(record)


def stream_supports_color(stream: TextIO) -> bool:
    isatty = getattr(stream, "isatty", None)
    if isatty is None or not isatty():
        return False
    # https://no-color.org/
    if os.environ.get("NO_COLOR"):
        return False
    return os.environ.get("TERM", "") != "dumb"


class SourceLogger(logging.LoggerAdapter):
    """Prefixes every message with the name of the vCard source it concerns."""

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['source']}] {msg}", kwargs


def source_logger(logger: logging.Logger, source_name: str) -> SourceLogger:
    return SourceLogger(logger, {"source": source_name})


def get_log_level_from_env() -> int:
    """
    Log level requested through the environment.

    VCARD_IMPORT_DEBUG wins over VCARD_IMPORT_LOG_LEVEL. Unknown level names
    fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG

    name = os.environ.get(ENV_LOG_LEVEL, "INFO").strip().upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def get_default_log_dir() -> Path:
    return resolve_config_dir() / LOG_DIR_NAME


def dated_log_file(log_dir: Path, day: Optional[date] = None) -> Path:
    day = day or date.today()
    return log_dir / f"{LOG_FILE_PREFIX}{day.strftime('%Y%m%d')}.log"


def get_log_file_path(log_dir: Optional[Path] = None) -> Optional[Path]:
    """
    Log file for this run.

    VCARD_IMPORT_LOG_FILE overrides everything. Otherwise the file is the
    dated log in log_dir, or in the logs directory of the configuration
    directory.

    Returns:
        Path to the log file, or None if file logging is disabled
    """
    log_file = os.environ.get(ENV_LOG_FILE, "").strip()
    if log_file:
        if log_file.lower() in _DISABLED_LOG_FILE_VALUES:
            return None
        return Path(log_file).expanduser()

    return dated_log_file(log_dir or get_default_log_dir())


def _console_handler(verbose: bool, level: int, use_colors: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    fmt = VERBOSE_CONSOLE_FORMAT if verbose else CONSOLE_FORMAT
    if use_colors:
        handler.setFormatter(ColoredFormatter(fmt, DATE_FORMAT, stream=sys.stderr))
    else:
        handler.setFormatter(logging.Formatter(fmt, DATE_FORMAT))
    return handler


def _file_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, encoding="utf-8")
    # The file always gets the full detail
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, DATE_FORMAT))
    return handler


def _route_http_logs(handlers: list[logging.Handler], verbose: bool) -> None:
    for name in HTTP_LOGGER_NAMES:
        http_logger = logging.getLogger(name)
        http_logger.handlers.clear()
        if verbose:
            http_logger.setLevel(logging.DEBUG)
            http_logger.propagate = False
            for handler in handlers:
                http_logger.addHandler(handler)
        else:
            http_logger.setLevel(logging.NOTSET)
            http_logger.propagate = True


def setup_logging(
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    level: Optional[int] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the vcard_import logger hierarchy.

    Safe to call more than once; earlier handlers are replaced.

    Args:
        verbose: DEBUG level, detailed console format and HTTP request logs.
        log_dir: Directory for the dated log file (default: logs directory
                 inside the configuration directory).
        level: Console level; determined from the environment when None.
        enable_file_logging: If False, only the console handler is added.
        use_colors: Color level names on capable terminals.

    Returns:
        The vcard_import logger
    """
    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(LOGGER_NAME)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.setLevel(logging.DEBUG if enable_file_logging else level)
    # Messages would be printed twice if a root handler is configured
    logger.propagate = False

    logger.addHandler(_console_handler(verbose, level, use_colors))

    if enable_file_logging:
        file_path = get_log_file_path(log_dir)
        if file_path is not None:
            try:
                logger.addHandler(_file_handler(file_path))
            except OSError as e:
                logger.warning(f"Could not create log file {file_path}: {e}")
            else:
                logger.debug(f"Log file: {file_path}")

    _route_http_logs(list(logger.handlers), verbose)
    return logger


def cleanup_old_logs(
    log_dir: Optional[Path] = None, keep_count: int = DEFAULT_LOG_RETENTION
) -> int:
    """
    Delete all but the keep_count most recent dated log files.

    Returns:
        Number of files deleted
    """
    if keep_count <= 0:
        return 0

    log_dir = log_dir or get_default_log_dir()
    if not log_dir.is_dir():
        return 0

    # Dated names sort chronologically
    log_files = sorted(log_dir.glob(f"{LOG_FILE_PREFIX}*.log"), reverse=True)

    deleted = 0
    for log_file in log_files[keep_count:]:
        try:
            log_file.unlink()
            deleted += 1
        except OSError as e:
            logging.getLogger(LOGGER_NAME).debug(f"Could not delete old log {log_file}: {e}")
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Logger inside the vcard_import hierarchy for a module name."""
    if name != LOGGER_NAME and not name.startswith(f"{LOGGER_NAME}."):
        name = f"{LOGGER_NAME}.{name}"
    return logging.getLogger(name)


__all__ = [
    "setup_logging",
    "get_logger",
    "source_logger",
    "SourceLogger",
    "cleanup_old_logs",
    "ColoredFormatter",
    "stream_supports_color",
    "get_log_level_from_env",
    "get_log_file_path",
    "get_default_log_dir",
    "dated_log_file",
    "LOGGER_NAME",
    "LOG_DIR_NAME",
    "LOG_FILE_PREFIX",
    "CONSOLE_FORMAT",
    "VERBOSE_CONSOLE_FORMAT",
    "FILE_FORMAT",
    "DATE_FORMAT",
]
