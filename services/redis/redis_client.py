"""
Redis Client Service
====================

Redis connection management for the redis-backed local fallback store.

Redis is OPTIONAL: it is only used when LOCAL_STORE_BACKEND=redis. Unlike a
cache, the local store is the last resort for writes, so failures here are
raised to the caller instead of being swallowed.

Configuration via environment variables:
- REDIS_URL: Redis connection URL (default: redis://localhost:6379/0)

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import os
import time
import logging
from functools import wraps
from typing import Optional, Any, Dict, List, Callable, TypeVar

import redis

logger = logging.getLogger(__name__)

# Type variable for generic return type
T = TypeVar('T')


class _RedisState:
    """Manages Redis connection state to avoid global variables."""
    _client: Optional[Any] = None

    @classmethod
    def set_client(cls, client: Any) -> None:
        """Set the Redis client."""
        cls._client = client

    @classmethod
    def clear_client(cls) -> None:
        """Clear the Redis client."""
        cls._client = None

    @classmethod
    def get_client(cls) -> Optional[Any]:
        """Get the Redis client."""
        return cls._client


# Retry configuration
_RETRY_MAX_ATTEMPTS = 3
_RETRY_BASE_DELAY = 0.1  # seconds


class RedisConnectionError(Exception):
    """Raised when a Redis operation fails after retries."""


class RedisStartupError(Exception):
    """Raised when the Redis connection cannot be established."""


def _with_retry(operation_name: str):
    """
    Decorator for Redis operations with retry logic.

    Retries on transient connection/timeout errors with exponential backoff,
    then raises RedisConnectionError. Other redis errors are raised at once.

    Args:
        operation_name: Name for logging (e.g., "SET", "GET")
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs):
            last_error = None
            for attempt in range(_RETRY_MAX_ATTEMPTS):
                try:
                    return func(*args, **kwargs)
                except (redis.ConnectionError, redis.TimeoutError) as e:
                    last_error = e
                    if attempt < _RETRY_MAX_ATTEMPTS - 1:
                        delay = _RETRY_BASE_DELAY * (2 ** attempt)
                        time.sleep(delay)
                        logger.debug(
                            "[Redis] %s retry %d/%d after %.1fs",
                            operation_name,
                            attempt + 1,
                            _RETRY_MAX_ATTEMPTS,
                            delay
                        )
                except redis.RedisError as e:
                    logger.warning("[Redis] %s failed: %s", operation_name, e)
                    raise RedisConnectionError(f"{operation_name} failed: {e}") from e

            logger.warning(
                "[Redis] %s failed after %d retries: %s",
                operation_name,
                _RETRY_MAX_ATTEMPTS,
                last_error
            )
            raise RedisConnectionError(f"{operation_name} failed: {last_error}") from last_error
        return wrapper
    return decorator


def _get_redis_config(url: Optional[str] = None) -> Dict[str, Any]:
    """Get Redis configuration from arguments and environment."""
    return {
        'url': url or os.getenv('REDIS_URL', 'redis://localhost:6379/0'),
        'max_connections': int(os.getenv('REDIS_MAX_CONNECTIONS', '20')),
        'socket_timeout': int(os.getenv('REDIS_SOCKET_TIMEOUT', '5')),
        'socket_connect_timeout': int(os.getenv('REDIS_SOCKET_CONNECT_TIMEOUT', '5')),
        'retry_on_timeout': os.getenv('REDIS_RETRY_ON_TIMEOUT', 'true').lower() == 'true',
    }


def init_redis_sync(url: Optional[str] = None) -> Any:
    """
    Initialize the Redis connection (synchronous).

    Returns:
        The connected client.

    Raises:
        RedisStartupError: Redis is unreachable.
    """
    config = _get_redis_config(url)
    redis_url = config['url']

    logger.info("[Redis] Connecting to %s...", redis_url)

    try:
        redis_client = redis.from_url(
            redis_url,
            encoding='utf-8',
            decode_responses=True,
            max_connections=config['max_connections'],
            socket_timeout=config['socket_timeout'],
            socket_connect_timeout=config['socket_connect_timeout'],
            retry_on_timeout=config['retry_on_timeout'],
        )
        redis_client.ping()

        info = redis_client.info("server")
        redis_version = info.get("redis_version", "unknown")

        _RedisState.set_client(redis_client)
        logger.info("[Redis] Connected successfully (version: %s)", redis_version)
        return redis_client

    except redis.RedisError as exc:
        logger.error("[Redis] Connection to %s failed: %s", redis_url, exc)
        raise RedisStartupError(f"Failed to connect to Redis: {exc}") from exc


class RedisOperations:
    """
    String-key operations used by the local store.

    Uses the injected client, or the process-wide one from init_redis_sync.
    Retry: transient connection/timeout errors are retried with exponential backoff.
    """

    def __init__(self, client: Optional[Any] = None):
        self._client = client

    def _get_client(self):
        redis_client = self._client or _RedisState.get_client()
        if redis_client is None:
            raise RedisConnectionError("Redis is not initialized")
        return redis_client

    @_with_retry("GET")
    def get(self, key: str) -> Optional[str]:
        """Get a key value. Returns None if not found."""
        return self._get_client().get(key)

    @_with_retry("MSET")
    def set_many(self, mapping: Dict[str, str]) -> bool:
        """Write several keys in one transaction pipeline."""
        pipe = self._get_client().pipeline(transaction=True)
        for key, value in mapping.items():
            pipe.set(key, value)
        pipe.execute()
        return True

    @_with_retry("DELETE")
    def delete(self, *keys: str) -> int:
        """Delete keys. Returns the number removed."""
        if not keys:
            return 0
        return self._get_client().delete(*keys)

    @_with_retry("SCAN")
    def keys_by_pattern(self, pattern: str) -> List[str]:
        """
        Get keys matching pattern using SCAN (safe for production).

        Uses SCAN instead of KEYS for O(1) per call instead of O(N).
        """
        redis_client = self._get_client()
        keys = []
        cursor = 0
        while True:
            cursor, batch = redis_client.scan(cursor, match=pattern, count=100)
            keys.extend(batch)
            if cursor == 0:
                break
        return keys

    def close(self) -> None:
        """Close the client gracefully; the process-wide one is forgotten too."""
        redis_client = self._client or _RedisState.get_client()
        if redis_client is None:
            return
        try:
            redis_client.close()
            logger.info("[Redis] Connection closed")
        except redis.RedisError as e:
            logger.warning("[Redis] Error closing connection: %s", e)
        if redis_client is _RedisState.get_client():
            _RedisState.clear_client()
