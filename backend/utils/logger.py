"""
Analyst Logging Framework

One "analyst" logger tree for the runtime, the agent loop and the CLI.
Console output goes to stderr so it never mixes with the interactive trace;
a rotating file log is written only when a log directory is configured.

Usage:
    from backend.utils.logger import get_logger
    logger = get_logger(__name__)

    logger.info("Tool call finished", tool_name="run_python_code", is_error=False)
    logger.error("Restart failed", exc_info=True, attempt=2)
"""

import logging
import logging.handlers
import sys
import os
from typing import Optional, Any, Dict


# =============================================================================
# Log Level Constants
# =============================================================================

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

ROOT_LOGGER_NAME = "analyst"


# =============================================================================
# Custom Formatter with Context Support
# =============================================================================

class AnalystFormatter(logging.Formatter):
    """
    Formatter that appends structured context (key=value pairs) and the
    call site to every record, optionally colouring the level name.
    """

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",      # Reset
    }

    def __init__(self, fmt: str, datefmt: Optional[str] = None, use_colors: bool = False):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        if not getattr(record, "location", None):
            filename = os.path.basename(record.pathname) if record.pathname else "unknown"
            record.location = f"{filename}:{record.funcName}:{record.lineno}"

        context = getattr(record, "context", None) or {}
        context_parts = [f"{key}={value}" for key, value in context.items()]
        record.context_str = " | " + " ".join(context_parts) if context_parts else ""

        if self.use_colors and record.levelname in self.COLORS:
            record.levelname_colored = (
                f"{self.COLORS[record.levelname]}{record.levelname:8}{self.COLORS['RESET']}"
            )
        else:
            record.levelname_colored = f"{record.levelname:8}"

        return super().format(record)


# =============================================================================
# Context-Aware Logger
# =============================================================================

class AnalystLogger(logging.LoggerAdapter):
    """
    Logger adapter taking structured context as keyword arguments.

    Example:
        logger.info("Restarting execution runtime", attempt=2, max_attempts=3)
        # Output: 2026-01-04 12:00:00 | INFO | transport.py:_connect:88 | Restarting execution runtime | attempt=2 max_attempts=3
    """

    STANDARD_KEYS = {"exc_info", "stack_info", "stacklevel", "extra"}

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        context = {}
        extra = kwargs.get("extra", {})

        for key in list(kwargs.keys()):
            if key not in self.STANDARD_KEYS:
                context[key] = kwargs.pop(key)

        context.update(self.extra)
        extra["context"] = context
        kwargs["extra"] = extra

        return msg, kwargs

    def bind(self, **context: Any) -> "AnalystLogger":
        """Return a logger that adds ``context`` to every record."""
        merged = dict(self.extra)
        merged.update(context)
        return AnalystLogger(self.logger, merged)


# =============================================================================
# Logger Factory
# =============================================================================

_initialized = False
_log_level: int = logging.WARNING


def configure_logging(
    log_level: str = "WARNING",
    log_dir: Optional[str] = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    use_colors: bool = True,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 7,
    force: bool = False,
) -> None:
    """
    Configure the "analyst" logger tree. The CLI calls this once at startup.

    Args:
        log_level: Minimum console log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for log files. No file is written when None
        log_to_console: Whether to output logs to console (stderr)
        log_to_file: Whether to write logs to file (requires log_dir)
        use_colors: Whether to use colors in console output
        max_bytes: Maximum size of each log file before rotation
        backup_count: Number of backup files to keep
        force: Reconfigure even if logging was already configured
    """
    global _initialized, _log_level

    if _initialized and not force:
        return

    _log_level = LOG_LEVELS.get(log_level.upper(), logging.WARNING)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()
    root_logger.propagate = False

    console_format = "%(asctime)s | %(levelname_colored)s | %(location)s | %(message)s%(context_str)s"
    file_format = "%(asctime)s | %(levelname)-8s | %(name)s | %(location)s | %(message)s%(context_str)s"

    if log_to_console:
        if hasattr(sys.stderr, "reconfigure"):
            try:
                sys.stderr.reconfigure(errors="replace")
            except (AttributeError, ValueError, OSError):
                pass

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(_log_level)
        console_handler.setFormatter(
            AnalystFormatter(console_format, datefmt="%Y-%m-%d %H:%M:%S", use_colors=use_colors)
        )
        root_logger.addHandler(console_handler)

    if log_to_file and log_dir:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            os.path.join(log_dir, "analyst.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging.DEBUG)  # File captures everything
        file_handler.setFormatter(
            AnalystFormatter(file_format, datefmt="%Y-%m-%d %H:%M:%S", use_colors=False)
        )
        root_logger.addHandler(file_handler)

    # Quiet the libraries we drive
    for module_name in ["anthropic", "httpx", "mcp"]:
        logging.getLogger(module_name).setLevel(logging.WARNING)

    _initialized = True


def get_logger(name: Optional[str] = None) -> AnalystLogger:
    """
    Logger for a module, with structured context support.

    Args:
        name: Module name (usually __name__). If None, returns root logger.

    Returns:
        AnalystLogger instance with context support

    Example:
        logger = get_logger(__name__)
        logger.info("Tools discovered", count=1)
    """
    # Auto-configure console output only; files are opt-in via configure_logging
    if not _initialized:
        configure_logging(log_to_file=False)

    if name:
        # e.g., "backend.analyst.mcp.transport" -> "analyst.mcp.transport"
        if name.startswith("backend."):
            name = name[len("backend."):]
        logger_name = name if name.startswith(ROOT_LOGGER_NAME) else f"{ROOT_LOGGER_NAME}.{name}"
    else:
        logger_name = ROOT_LOGGER_NAME

    return AnalystLogger(logging.getLogger(logger_name))


__all__ = [
    "configure_logging",
    "get_logger",
    "AnalystLogger",
    "AnalystFormatter",
    "LOG_LEVELS",
]
