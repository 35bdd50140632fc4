"""
Local Fallback Store
====================

Key-value store holding one JSON value per entity type under namespaced keys
(``bpmn:projects``, ``bpmn:folders``, ...). It serves every call the remote
backend cannot, and mirrors remote results so the two stay readable alike.

Read-modify-write is serialised per key with one asyncio.Lock each; a
transaction over several keys takes their locks in sorted key order, so two
transactions can never deadlock and sibling-order recomputation is atomic.

Backends:
- MemoryBackend: in-process dict (tests, embedded use)
- FileBackend: one JSON file per key under a directory, written with aiofiles
- RedisBackend: one string per key through services.redis.redis_client

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import asyncio
import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, TypeVar

import aiofiles
import aiofiles.os

from services.persistence.exceptions import PersistenceError
from services.redis.redis_client import RedisConnectionError, RedisOperations

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Entity keys
PROJECTS = 'projects'
FOLDERS = 'folders'
DIAGRAMS = 'diagrams'
PROFILES = 'profiles'
COLLABORATION_SESSIONS = 'collaboration_sessions'
ACTIVITY_LOGS = 'activity_logs'
PREFERENCES = 'preferences'

ENTITY_KEYS = (
    PROJECTS, FOLDERS, DIAGRAMS, PROFILES, COLLABORATION_SESSIONS, ACTIVITY_LOGS
)
ALL_KEYS = ENTITY_KEYS + (PREFERENCES,)


class LocalStoreError(PersistenceError):
    """Raised when the local store itself cannot be read or written."""

    fallback_eligible = False

    def __init__(self, message: str, context: Optional[dict] = None):
        super().__init__(message, error_code="LOCAL_STORE", context=context)


# ============================================================================
# Backends
# ============================================================================

class StoreBackend(ABC):
    """Raw string storage addressed by full (namespaced) keys."""

    name = 'abstract'

    @abstractmethod
    async def load(self, key: str) -> Optional[str]:
        """Return the stored string, None when absent."""

    @abstractmethod
    async def save(self, values: Dict[str, str]) -> None:
        """Write several keys together."""

    @abstractmethod
    async def delete(self, keys: Iterable[str]) -> None:
        """Remove keys; missing keys are ignored."""

    @abstractmethod
    async def keys(self, prefix: str) -> List[str]:
        """Full keys starting with prefix."""

    async def close(self) -> None:
        return None


class MemoryBackend(StoreBackend):
    """In-process backend. Values are kept serialised so callers never share objects."""

    name = 'memory'

    def __init__(self):
        self._data: Dict[str, str] = {}

    async def load(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def save(self, values: Dict[str, str]) -> None:
        self._data.update(values)

    async def delete(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def keys(self, prefix: str) -> List[str]:
        return sorted(key for key in self._data if key.startswith(prefix))


class FileBackend(StoreBackend):
    """
    One JSON file per key.

    Files are written to a temporary name and swapped in with os.replace, so a
    crash mid-write leaves the previous value intact.
    """

    name = 'file'

    def __init__(self, directory: str):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key.replace(':', '__')}.json"

    async def load(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not await aiofiles.os.path.exists(path):
            return None
        async with aiofiles.open(path, 'r', encoding='utf-8') as f:
            return await f.read()

    async def save(self, values: Dict[str, str]) -> None:
        for key, value in values.items():
            path = self._path(key)
            temp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
            async with aiofiles.open(temp_path, 'w', encoding='utf-8') as f:
                await f.write(value)
            await aiofiles.os.replace(temp_path, path)

    async def delete(self, keys: Iterable[str]) -> None:
        for key in keys:
            path = self._path(key)
            if await aiofiles.os.path.exists(path):
                await aiofiles.os.remove(path)

    async def keys(self, prefix: str) -> List[str]:
        file_prefix = prefix.replace(':', '__')
        return sorted(
            path.stem.replace('__', ':')
            for path in self.directory.glob('*.json')
            if path.stem.startswith(file_prefix)
        )


class RedisBackend(StoreBackend):
    """
    Backend on a Redis server; keys are stored as plain strings.

    The redis client is synchronous (its retry helper sleeps between
    attempts), so every call runs in a worker thread.
    """

    name = 'redis'

    def __init__(self, operations: Optional[RedisOperations] = None):
        self.ops = operations or RedisOperations()

    async def load(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self.ops.get, key)

    async def save(self, values: Dict[str, str]) -> None:
        await asyncio.to_thread(self.ops.set_many, values)

    async def delete(self, keys: Iterable[str]) -> None:
        await asyncio.to_thread(self.ops.delete, *list(keys))

    async def keys(self, prefix: str) -> List[str]:
        found = await asyncio.to_thread(self.ops.keys_by_pattern, f"{prefix}*")
        return sorted(found)

    async def close(self) -> None:
        await asyncio.to_thread(self.ops.close)


# ============================================================================
# Store
# ============================================================================

def _default_for(key: str):
    return {} if key == PREFERENCES else []


class LocalStore:
    """
    Namespaced JSON store with per-key locking.

    Values handed out are freshly decoded, so mutating them never changes the
    stored state until they are written back inside a transaction.
    """

    def __init__(self, backend: Optional[StoreBackend] = None, namespace: str = 'bpmn'):
        self.backend = backend or MemoryBackend()
        self.namespace = namespace
        self._locks: Dict[str, asyncio.Lock] = {}

    def full_key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def _load(self, key: str):
        try:
            raw = await self.backend.load(self.full_key(key))
        except (OSError, RedisConnectionError) as e:
            raise LocalStoreError(f"Failed to read {key}: {e}", {"key": key}) from e
        if raw is None or raw == '':
            return _default_for(key)
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("[LocalStore] Corrupt value under %s, treating as empty: %s",
                         self.full_key(key), e)
            return _default_for(key)

    async def _save(self, values: Dict[str, Any]) -> None:
        encoded = {
            self.full_key(key): json.dumps(value, ensure_ascii=False, default=str)
            for key, value in values.items()
        }
        try:
            await self.backend.save(encoded)
        except (OSError, RedisConnectionError) as e:
            raise LocalStoreError(
                f"Failed to write {', '.join(values)}: {e}", {"keys": list(values)}
            ) from e

    async def read(self, key: str):
        """Current value of one key (list for entities, dict for preferences)."""
        return await self._load(key)

    async def write(self, key: str, value: Any) -> None:
        async with self._lock_for(key):
            await self._save({key: value})

    @asynccontextmanager
    async def transaction(self, *keys: str, write: bool = True):
        """
        Lock keys in sorted order, yield their decoded values as a dict, and
        write every key back when the block exits without an exception.
        """
        ordered = sorted(set(keys))
        locks = [self._lock_for(key) for key in ordered]
        acquired = []
        try:
            for lock in locks:
                await lock.acquire()
                acquired.append(lock)
            data = {key: await self._load(key) for key in ordered}
            yield data
            if write:
                await self._save({key: data[key] for key in ordered})
        finally:
            for lock in reversed(acquired):
                lock.release()

    async def run(self, keys: Iterable[str], fn: Callable[[Dict[str, Any]], T],
                  write: bool = True) -> T:
        """Run a synchronous mutator over the values of keys inside one transaction."""
        async with self.transaction(*keys, write=write) as data:
            return fn(data)

    async def upsert_many(self, key: str, records: List[Dict[str, Any]],
                          pending_sync: bool = False, keep_pending: bool = False) -> None:
        """
        Replace-or-append records by id, tagging them with their sync state.

        With keep_pending, rows still waiting for sync are left untouched.
        """
        if not records:
            return
        async with self.transaction(key) as data:
            rows = data[key]
            index = {row.get('id'): i for i, row in enumerate(rows)}
            for record in records:
                row = dict(record)
                row['pending_sync'] = pending_sync
                position = index.get(row.get('id'))
                if position is None:
                    index[row.get('id')] = len(rows)
                    rows.append(row)
                elif not (keep_pending and rows[position].get('pending_sync')):
                    rows[position] = row

    async def remove_ids(self, key: str, ids: Iterable[str]) -> int:
        doomed = set(ids)
        if not doomed:
            return 0
        async with self.transaction(key) as data:
            before = len(data[key])
            data[key] = [row for row in data[key] if row.get('id') not in doomed]
            return before - len(data[key])

    async def clear(self, keys: Iterable[str] = ENTITY_KEYS) -> List[str]:
        """Remove entity data; the mode preference survives unless named."""
        ordered = sorted(set(keys))
        for key in ordered:
            await self._lock_for(key).acquire()
        try:
            await self.backend.delete([self.full_key(key) for key in ordered])
        except (OSError, RedisConnectionError) as e:
            raise LocalStoreError(f"Failed to clear local data: {e}") from e
        finally:
            for key in reversed(ordered):
                self._lock_for(key).release()
        logger.info("[LocalStore] Cleared %s", ", ".join(ordered))
        return ordered

    async def counts(self) -> Dict[str, int]:
        """Record count per entity key."""
        result = {}
        for key in ENTITY_KEYS:
            value = await self._load(key)
            result[key] = len(value)
        return result

    async def close(self) -> None:
        await self.backend.close()


def create_local_store(backend_name: str, namespace: str = 'bpmn',
                       directory: Optional[str] = None,
                       redis_operations: Optional[RedisOperations] = None) -> LocalStore:
    """Build a LocalStore for the configured backend name."""
    if backend_name == 'memory':
        backend = MemoryBackend()
    elif backend_name == 'file':
        backend = FileBackend(directory or os.path.join('data', 'local_store'))
    elif backend_name == 'redis':
        backend = RedisBackend(redis_operations)
    else:
        raise ValueError(f"Unknown local store backend: {backend_name}")
    logger.debug("[LocalStore] Using %s backend (namespace=%s)", backend.name, namespace)
    return LocalStore(backend, namespace=namespace)
