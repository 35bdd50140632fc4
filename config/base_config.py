"""Base configuration class and core settings.

This module provides the base Config class with caching mechanism and the
core settings shared by every component (version, logging).
"""
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_TRUE_VALUES = ('1', 'true', 'yes', 'on')


class BaseConfig:
    """Base configuration class with caching mechanism.

    Explicit overrides passed to the constructor win over the environment,
    so tests and embedding applications can inject configuration without
    touching os.environ.
    """

    def __init__(self, overrides: Optional[Dict[str, Any]] = None):
        self._overrides = dict(overrides or {})
        self._cache = {}
        self._cache_timestamp = 0
        self._cache_duration = 30
        self._version = None

    def _get_cached_value(self, key: str, default=None):
        """Get cached value from overrides or environment."""
        if key in self._overrides:
            return self._overrides[key]
        current_time = time.time()
        if current_time - self._cache_timestamp > self._cache_duration:
            self._cache.clear()
            self._cache_timestamp = current_time
        if key not in self._cache:
            self._cache[key] = os.environ.get(key, default)
        return self._cache[key]

    def _get_bool(self, key: str, default: bool = False) -> bool:
        value = self._get_cached_value(key, None)
        if value is None:
            return default
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES

    def _get_int(self, key: str, default: int, minimum: int = 0) -> int:
        try:
            val = int(self._get_cached_value(key, default))
            if val < minimum:
                logger.warning("%s %s below %s, using %s", key, val, minimum, default)
                return default
            return val
        except (ValueError, TypeError):
            logger.warning("Invalid %s value, using %s", key, default)
            return default

    def _get_float(self, key: str, default: float) -> float:
        try:
            val = float(self._get_cached_value(key, default))
            if val <= 0:
                logger.warning("%s must be positive, using %s", key, default)
                return default
            return val
        except (ValueError, TypeError):
            logger.warning("Invalid %s value, using %s", key, default)
            return default

    @property
    def version(self) -> str:
        """
        Package version - read from VERSION file (single source of truth).
        Cached after first read for performance.
        """
        if self._version is None:
            try:
                version_file = Path(__file__).parent.parent / 'VERSION'
                self._version = version_file.read_text(encoding='utf-8').strip()
            except OSError as e:
                logger.warning("Failed to read VERSION file: %s", e)
                self._version = "0.0.0"
        return self._version

    @property
    def log_level(self) -> str:
        """Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)."""
        level = str(self._get_cached_value('LOG_LEVEL', 'INFO')).upper()
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if level not in valid_levels:
            logger.warning("Invalid LOG_LEVEL '%s', using INFO", level)
            return 'INFO'
        return level
