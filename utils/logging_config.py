"""
Logging configuration for the workspace persistence layer.

Handles:
- Unified formatter with ANSI colors and short source tags
- Console handler that survives closed streams
- Optional size-rotated log file
"""

import os
import re
import sys
import logging
from logging.handlers import RotatingFileHandler
from typing import Literal, Optional

from config.settings import config


def _is_stream_usable(stream) -> bool:
    """
    Check if a stream is usable for logging without triggering errors.

    Returns True if stream can be written to, False otherwise.
    """
    if stream is None:
        return False

    try:
        if hasattr(stream, 'closed') and stream.closed:
            return False
        return hasattr(stream, 'write')
    except (AttributeError, ValueError, OSError):
        return False


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that gracefully handles closed streams."""

    def emit(self, record):
        """Emit a record, handling closed streams gracefully."""
        if not _is_stream_usable(self.stream):
            return

        try:
            super().emit(record)
        except (ValueError, OSError) as error:
            error_str = str(error).lower()
            if any(phrase in error_str for phrase in [
                "closed file", "i/o operation", "bad file descriptor",
                "operation on closed", "stream is closed"
            ]):
                return
            raise


class UnifiedFormatter(logging.Formatter):
    """Unified logging formatter with ANSI color support."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARN': '\033[33m',     # Yellow
        'ERROR': '\033[31m',    # Red
        'CRIT': '\033[35m',     # Magenta
        'RESET': '\033[0m',     # Reset
        'BOLD': '\033[1m',      # Bold
    }

    LEVEL_MAP = {
        'DEBUG': 'DEBUG',
        'INFO': 'INFO',
        'WARNING': 'WARN',
        'ERROR': 'ERROR',
        'CRITICAL': 'CRIT'
    }

    def __init__(self, fmt=None, datefmt=None, style: Literal['%', '{', '$'] = '%',
                 validate=True, use_colors: bool = True):
        super().__init__(fmt=fmt, datefmt=datefmt, style=style, validate=validate)
        self.use_colors = use_colors

    @staticmethod
    def _source_tag(name: str) -> str:
        if name == '__main__':
            return 'MAIN'
        if name.startswith('services.persistence'):
            return 'PERS'
        if name.startswith('services.redis'):
            return 'REDS'
        if name.startswith('config'):
            return 'CONF'
        if name.startswith('sqlalchemy'):
            return 'SQLA'
        if name == 'asyncio':
            return 'ASYN'
        return name[:4].upper()

    def format(self, record):
        timestamp = self.formatTime(record, '%H:%M:%S')
        level_name = self.LEVEL_MAP.get(record.levelname, record.levelname)

        if self.use_colors:
            color = self.COLORS.get(level_name, '')
            reset = self.COLORS['RESET']
            if level_name == 'CRIT':
                level = f"{self.COLORS['BOLD']}{color}{level_name.ljust(5)}{reset}"
            else:
                level = f"{color}{level_name.ljust(5)}{reset}"
        else:
            level = level_name.ljust(5)

        source = self._source_tag(record.name).ljust(4)
        pid = os.getpid()

        # Normalize message spacing
        message = record.getMessage().lstrip()
        message = re.sub(r' +', ' ', message)

        line = f"[{timestamp}] {level} | {source} | [{pid}] {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(level: Optional[str] = None, log_file: Optional[str] = None):
    """
    Configure logging for the persistence layer.

    Args:
        level: Level name; defaults to LOG_LEVEL from configuration
        log_file: Optional path of a size-rotated log file
    """
    unified_formatter = UnifiedFormatter()
    handlers = []

    if _is_stream_usable(sys.stdout):
        console_handler = SafeStreamHandler(sys.stdout)
        console_handler.setFormatter(unified_formatter)
        handlers.append(console_handler)

    if log_file:
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file, maxBytes=10 * 1024 * 1024, backupCount=10, encoding='utf-8'
            )
            file_handler.setFormatter(UnifiedFormatter(use_colors=False))
            handlers.append(file_handler)
        except OSError:
            if not handlers:
                handlers.append(logging.NullHandler())

    if not handlers:
        handlers.append(logging.NullHandler())

    level_name = (level or config.log_level).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(level=log_level, handlers=handlers, force=True)

    for logger_name in ['services', 'config', 'models', 'utils']:
        specific_logger = logging.getLogger(logger_name)
        specific_logger.setLevel(log_level)
        specific_logger.propagate = True

    # SQL echo is too chatty below WARNING
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    return log_level
