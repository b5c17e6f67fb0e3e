"""
Logging utilities for the Conduit MCP client.

All loggers created through get_logger share one set of handlers: a rich
console handler on stderr (stdout belongs to the shell and to stdio servers'
protocol traffic) and, optionally, a plain-text file handler.
"""

import json
import logging
from typing import Any, Dict, List, Optional, Union

from rich.console import Console
from rich.logging import RichHandler


_console = Console(stderr=True)
_loggers: Dict[str, logging.Logger] = {}
_level = logging.INFO
_handlers: List[logging.Handler] = [RichHandler(console=_console, rich_tracebacks=True)]

FILE_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# MCP server log notification levels mapped onto stdlib levels
MCP_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}


def parse_level(level: Union[str, int]) -> int:
    """
    Turn a level name ("debug", "INFO", ...) or number into a logging level.
    Unknown names fall back to INFO.
    """
    if isinstance(level, int):
        return level
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def _attach(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in _handlers:
        logger.addHandler(handler)
    logger.setLevel(_level)


def configure_logging(level: Union[str, int] = logging.INFO, add_file_handler: Optional[str] = None) -> None:
    """
    Configure the logging system. Loggers that already exist are updated in place.

    Args:
        level: Logging level, as a number or a level name.
        add_file_handler: If provided, also log to this file.
    """
    global _level, _handlers

    _level = parse_level(level)
    _handlers = [RichHandler(console=_console, rich_tracebacks=True)]

    if add_file_handler:
        file_handler = logging.FileHandler(add_file_handler)
        file_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT))
        _handlers.append(file_handler)

    for logger in _loggers.values():
        _attach(logger)


def _render(data: Any) -> str:
    try:
        return json.dumps(data, default=str, separators=(",", ":"))
    except (TypeError, ValueError):
        return repr(data)


class PatchedLogger(logging.Logger):
    """
    A logger whose methods accept a `data=` keyword with a structured payload,
    appended to the message as compact JSON.
    """

    def _log(
        self,
        level,
        msg,
        args,
        exc_info=None,
        extra=None,
        stack_info=False,
        stacklevel=1,
        data=None,
    ):
        if data is not None:
            msg = f"{msg} {_render(data)}"

        super()._log(level, msg, args, exc_info, extra, stack_info, stacklevel + 1)


logging.setLoggerClass(PatchedLogger)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the specified name, wired to the shared handlers.
    """
    logger = _loggers.get(name)
    if logger is None:
        logger = logging.getLogger(name)
        _attach(logger)
        _loggers[name] = logger
    return logger
