"""
Logging utilities for Biostratum MCP.

Every module gets its logger from ``get_logger(__name__)``. Records go to a
rich handler on stderr, so stdout stays free for hosts that speak a protocol
over it, and optionally to a plain log file.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler


# Global logger configuration
_loggers: Dict[str, logging.Logger] = {}
_console = Console(stderr=True)
_log_level = logging.INFO
_file_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _rich_handler() -> logging.Handler:
    return RichHandler(console=_console, rich_tracebacks=True, show_path=False)


_log_handlers: List[logging.Handler] = [_rich_handler()]


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _apply(logger: logging.Logger) -> None:
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
    for handler in _log_handlers:
        logger.addHandler(handler)
    logger.setLevel(_log_level)


def configure_logging(
    level: Union[int, str] = logging.INFO, add_file_handler: Optional[str] = None
) -> None:
    """
    Configure the logging system.

    Args:
        level: Logging level, either numeric or a name such as "debug".
        add_file_handler: If provided, also log to this file.
    """
    global _log_level, _log_handlers

    _log_level = _resolve_level(level)
    handlers: List[logging.Handler] = [_rich_handler()]

    if add_file_handler:
        log_path = Path(add_file_handler).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(_file_format))
        handlers.append(file_handler)

    _log_handlers = handlers

    # Update existing loggers
    for logger in _loggers.values():
        _apply(logger)


def format_data(data: Any) -> str:
    """Render a structured log payload as compact JSON where possible."""
    if isinstance(data, str):
        return data
    try:
        return json.dumps(data, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return repr(data)


class PatchedLogger(logging.Logger):
    """
    A logger that accepts a ``data`` keyword with a structured payload.
    """

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False,
             stacklevel=1, data=None, **kwargs):
        if data is not None:
            msg = f"{msg} {format_data(data)}"

        super()._log(level, msg, args, exc_info, extra, stack_info, stacklevel)


# Register our custom logger class
logging.setLoggerClass(PatchedLogger)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name.

    Args:
        name: Name of the logger.

    Returns:
        Logger instance.
    """
    if name in _loggers:
        return _loggers[name]

    logger = logging.getLogger(name)
    _apply(logger)

    _loggers[name] = logger
    return logger
