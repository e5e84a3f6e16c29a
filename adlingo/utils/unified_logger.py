"""
Console logging setup shared by the CLI and the HTTP API.

Modules log through ``logging.getLogger(__name__)``; this module only installs
the colored console handler on the package logger.
"""
import logging
import os
import sys
from datetime import datetime
from typing import Optional

from adlingo.config import DEBUG_MODE

PACKAGE_LOGGER = "adlingo"


class Colors:
    """ANSI color codes for terminal output"""
    # Check if colors should be disabled
    NO_COLOR = os.environ.get('NO_COLOR') is not None or not sys.stdout.isatty()

    YELLOW = '' if NO_COLOR else '\033[93m'
    WHITE = '' if NO_COLOR else '\033[97m'
    GRAY = '' if NO_COLOR else '\033[90m'
    GREEN = '' if NO_COLOR else '\033[92m'
    RED = '' if NO_COLOR else '\033[91m'
    ENDC = '' if NO_COLOR else '\033[0m'

    @classmethod
    def disable(cls):
        """Disable all colors"""
        cls.YELLOW = cls.WHITE = cls.GRAY = cls.GREEN = cls.RED = cls.ENDC = ''


class ColoredFormatter(logging.Formatter):
    """[HH:MM:SS] message, colored by level; logger name shown at DEBUG."""

    def __init__(self, show_names: bool = False):
        super().__init__()
        self.show_names = show_names

    def _color(self, levelno: int) -> str:
        if levelno >= logging.ERROR:
            return Colors.RED
        if levelno >= logging.WARNING:
            return Colors.YELLOW
        if levelno <= logging.DEBUG:
            return Colors.GRAY
        return Colors.WHITE

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        message = record.getMessage()
        if record.exc_info:
            message = f"{message}\n{self.formatException(record.exc_info)}"
        name = f" {Colors.GRAY}{record.name}{Colors.ENDC}" if self.show_names else ""
        return f"{Colors.GRAY}[{timestamp}]{Colors.ENDC}{name} {self._color(record.levelno)}{message}{Colors.ENDC}"


def _install_handler(level: int, enable_colors: bool, stream=None) -> logging.Logger:
    if not enable_colors:
        Colors.disable()

    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        if getattr(handler, '_adlingo_console', False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(ColoredFormatter(show_names=level <= logging.DEBUG))
    handler._adlingo_console = True
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


def setup_cli_logger(enable_colors: bool = True, verbose: Optional[bool] = None) -> logging.Logger:
    """Setup logger for CLI usage"""
    debug = DEBUG_MODE if verbose is None else verbose
    return _install_handler(logging.DEBUG if debug else logging.INFO, enable_colors)


def setup_api_logger() -> logging.Logger:
    """Setup logger for the HTTP API"""
    return _install_handler(logging.DEBUG if DEBUG_MODE else logging.INFO, enable_colors=True)
