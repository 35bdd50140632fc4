"""
Connection Manager
==================

Decides where each call goes (remote backend or local fallback store), probes
the remote backend, and provides the primitives every repository builds on:

- run_remote: one synchronous SQLAlchemy unit of work in a worker thread,
  bounded by a timeout, with driver errors mapped to persistence errors
- with_fallback: remote first, then the local store once, as an OperationResult
- execute_batch: concurrent remote writes, re-run locally as one transaction
  when any of them fails
- upsert_profile and the persisted mode preference

The mode preference is explicit. A failed call falls back for that call only
and never flips the mode.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as SchemaError
from sqlalchemy import func, inspect
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from config.database import find_missing_tables
from config.settings import Config
from models.common import ConnectionMode, EventType, RecordSource
from models.domain import Profile
from models.requests import ProfileUpsertRequest
from models.responses import OperationResult
from services.persistence.events import EventBus
from services.persistence.exceptions import (
    ConflictError, ConnectivityError, NotFoundError, PersistenceError, ValidationError
)
from services.persistence.local_store import (
    DIAGRAMS, FOLDERS, PREFERENCES, PROFILES, LocalStore
)
from services.persistence.ordering import dense_ranks
from utils.timestamps import now_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass
class BatchOperation:
    """
    One independent write of a batch.

    remote: unit of work run against a SQLAlchemy session
    local: mutator applied to the local store values (key -> list)
    keys: local store keys the mutator touches
    mirror_key: local key the remote result is mirrored into
    """
    remote: Callable[[Session], Any]
    local: Callable[[Dict[str, Any]], Any]
    keys: Tuple[str, ...]
    description: str = 'batch item'
    mirror_key: Optional[str] = None


@dataclass
class BatchResult:
    success: bool
    results: List[Any] = field(default_factory=list)
    error: Optional[Dict[str, Any]] = None
    source: Optional[RecordSource] = None
    finalized: Any = None

    def to_result(self, data: Any = None) -> OperationResult:
        if self.success:
            return OperationResult.ok(data, self.source)
        return OperationResult.fail(self.error or {"error": "batch failed"}, self.source)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'results': self.results,
            'error': self.error,
            'source': self.source.value if self.source else None,
        }


def schema_error(exc: SchemaError) -> ValidationError:
    """Turn a pydantic error into our ValidationError."""
    problems = [
        f"{'.'.join(str(part) for part in item['loc']) or 'record'}: {item['msg']}"
        for item in exc.errors()
    ]
    return ValidationError(
        "Invalid input: " + "; ".join(problems),
        error_code="INVALID_INPUT",
        context={"errors": problems}
    )


def _records_of(value: Any) -> List[Dict[str, Any]]:
    if isinstance(value, dict) and 'id' in value:
        return [value]
    if isinstance(value, list):
        return [item for item in value if isinstance(item, dict) and 'id' in item]
    return []


class ConnectionManager:
    """Connection-mode arbitrator and remote/local execution primitives."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None,
                 local_store: Optional[LocalStore] = None,
                 event_bus: Optional[EventBus] = None,
                 config: Optional[Config] = None,
                 force_local: Optional[bool] = None):
        self.config = config or Config()
        self.session_factory = session_factory
        self.local_store = local_store or LocalStore()
        self.events = event_bus or EventBus()
        self.remote_timeout = self.config.REMOTE_TIMEOUT_SECONDS
        self._force_local = self.config.FORCE_LOCAL if force_local is None else force_local
        self._scope_locks: Dict[str, asyncio.Lock] = {}
        self.is_connected = False
        self.last_connection_test: Optional[Dict[str, Any]] = None
        self.initialized = False

    # ------------------------------------------------------------------
    # Mode
    # ------------------------------------------------------------------

    @property
    def has_remote(self) -> bool:
        return self.session_factory is not None

    @property
    def force_local(self) -> bool:
        return self._force_local

    def resolve_mode(self) -> ConnectionMode:
        """LOCAL when the preference says so or no remote is configured."""
        if self._force_local or not self.has_remote:
            return ConnectionMode.LOCAL
        return ConnectionMode.REMOTE

    async def _set_mode_preference(self, force_local: bool) -> OperationResult:
        previous = self.resolve_mode()
        self._force_local = force_local
        try:
            async with self.local_store.transaction(PREFERENCES) as data:
                data[PREFERENCES]['force_local'] = force_local
                data[PREFERENCES]['updated_at'] = now_iso()
        except PersistenceError as e:
            logger.error("[ConnectionManager] Could not persist mode preference: %s", e)
            return OperationResult.fail(e.to_dict(), RecordSource.LOCAL)

        status = self.get_connection_status()
        logger.info("[ConnectionManager] Mode %s -> %s", previous.value, status['mode'])
        self.events.emit(
            EventType.MODE_CHANGED, status,
            delta={'force_local': force_local, 'previous_mode': previous.value},
            source=RecordSource.LOCAL
        )
        return OperationResult.ok(status, RecordSource.LOCAL)

    async def enable_local_mode(self) -> OperationResult:
        return await self._set_mode_preference(True)

    async def enable_database_mode(self) -> OperationResult:
        if not self.has_remote:
            logger.warning("[ConnectionManager] Database mode requested but no remote is configured")
        return await self._set_mode_preference(False)

    def scope_lock(self, scope: str) -> asyncio.Lock:
        """
        Lock serialising order-changing writes within one sibling scope family
        (for example every folder of a project), on both paths.
        """
        lock = self._scope_locks.get(scope)
        if lock is None:
            lock = asyncio.Lock()
            self._scope_locks[scope] = lock
        return lock

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> Dict[str, Any]:
        """
        Load the persisted mode preference, back-fill sort_order on legacy
        local records, and probe the remote when in REMOTE mode.
        """
        try:
            preferences = await self.local_store.read(PREFERENCES)
            if 'force_local' in preferences:
                self._force_local = bool(preferences['force_local'])
            filled = await self.local_store.run((FOLDERS, DIAGRAMS), _backfill_sort_order)
            if filled:
                logger.info("[ConnectionManager] Assigned sort_order to %d legacy local records", filled)
        except PersistenceError as e:
            logger.error("[ConnectionManager] Local store unavailable during initialize: %s", e)

        if self.resolve_mode() is ConnectionMode.REMOTE:
            await self.test_connection()
        self.initialized = True
        return self.get_connection_status()

    async def close(self):
        await self.local_store.close()
        logger.debug("[ConnectionManager] Closed")

    # ------------------------------------------------------------------
    # Remote execution
    # ------------------------------------------------------------------

    async def run_remote(self, work: Callable[[Session], Any],
                         description: str = 'remote operation') -> Any:
        """
        Run work(session) in a worker thread and commit.

        Raises:
            ConnectivityError: no remote, timeout, transport or schema error
            ConflictError: integrity violation
            PersistenceError: raised by work itself (NotFoundError, ...)
        """
        if self.session_factory is None:
            raise ConnectivityError("No remote backend configured", error_code="NO_REMOTE")

        session_factory = self.session_factory
        abandoned = threading.Event()

        def unit_of_work():
            session = session_factory()
            try:
                result = work(session)
                # The caller gave up and may already have written locally
                if abandoned.is_set():
                    session.rollback()
                    logger.warning("[ConnectionManager] %s finished after its timeout, rolled back",
                                   description)
                    return None
                session.commit()
                return result
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

        try:
            return await asyncio.wait_for(asyncio.to_thread(unit_of_work), timeout=self.remote_timeout)
        except asyncio.TimeoutError as e:
            abandoned.set()
            raise ConnectivityError(
                f"{description} timed out after {self.remote_timeout}s",
                error_code="TIMEOUT", context={"operation": description}
            ) from e
        except PersistenceError:
            raise
        except IntegrityError as e:
            raise ConflictError(
                f"{description} conflicted: {e.orig}", context={"operation": description}
            ) from e
        except SQLAlchemyError as e:
            raise ConnectivityError(
                f"{description} failed: {e}", context={"operation": description}
            ) from e

    async def with_fallback(self, operation: str,
                            remote: Optional[Callable[[], Awaitable[Any]]],
                            local: Callable[[], Awaitable[Any]]) -> OperationResult:
        """
        Try remote, then local once. Never raises.

        Validation failures and other non-eligible errors are returned as-is.
        """
        if remote is not None and self.resolve_mode() is ConnectionMode.REMOTE:
            try:
                data = await remote()
                logger.debug("[ConnectionManager] %s served remotely", operation)
                return OperationResult.ok(data, RecordSource.REMOTE)
            except PersistenceError as e:
                if not e.fallback_eligible:
                    logger.info("[ConnectionManager] %s rejected: %s", operation, e)
                    return OperationResult.fail(e.to_dict(), RecordSource.REMOTE)
                logger.warning(
                    "[ConnectionManager] %s failed remotely (%s), falling back to local store",
                    operation, e
                )
            except Exception as e:  # pylint: disable=broad-except
                logger.warning(
                    "[ConnectionManager] %s raised unexpectedly, falling back to local store: %s",
                    operation, e, exc_info=True
                )

        try:
            data = await local()
            return OperationResult.ok(data, RecordSource.LOCAL)
        except PersistenceError as e:
            level = logging.INFO if isinstance(e, (NotFoundError, ValidationError)) else logging.ERROR
            logger.log(level, "[ConnectionManager] %s failed locally: %s", operation, e)
            return OperationResult.fail(e.to_dict(), RecordSource.LOCAL)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("[ConnectionManager] %s failed locally: %s", operation, e, exc_info=True)
            error = PersistenceError(f"{operation} failed: {e}", error_code="UNEXPECTED")
            return OperationResult.fail(error.to_dict(), RecordSource.LOCAL)

    async def mirror(self, key: str, records: Any = None,
                     removed_ids: Optional[Iterable[str]] = None,
                     overwrite_pending: bool = True) -> None:
        """
        Copy remote results into the local store (pending_sync=False) so the
        local store can answer for them during a later outage.

        Reads pass overwrite_pending=False: a local write still waiting for
        sync is newer than what the remote returned.
        """
        try:
            rows = _records_of(records)
            if rows:
                await self.local_store.upsert_many(
                    key, rows, pending_sync=False, keep_pending=not overwrite_pending
                )
            if removed_ids:
                await self.local_store.remove_ids(key, removed_ids)
        except PersistenceError as e:
            logger.warning("[ConnectionManager] Could not mirror %s locally: %s", key, e)

    # ------------------------------------------------------------------
    # Probes
    # ------------------------------------------------------------------

    async def test_connection(self) -> Dict[str, Any]:
        """Probe the profiles table. Returns {connected, reason|error}; never raises."""
        if self.resolve_mode() is ConnectionMode.LOCAL:
            reason = 'force_local_mode' if self._force_local else 'no_remote_configured'
            outcome = {'connected': False, 'reason': reason}
        else:
            try:
                count = await self.run_remote(
                    lambda session: session.query(func.count(Profile.id)).scalar(),
                    'connection test'
                )
                outcome = {'connected': True, 'reason': 'ok', 'profile_count': count}
            except PersistenceError as e:
                outcome = {'connected': False, 'error': e.message, 'error_code': e.error_code}

        self.is_connected = outcome['connected']
        self.last_connection_test = dict(outcome, timestamp=now_iso())
        if self.is_connected:
            logger.debug("[ConnectionManager] Connection test succeeded")
            self.events.emit(EventType.CONNECTION_TEST_SUCCEEDED, self.last_connection_test,
                             source=RecordSource.REMOTE)
        else:
            logger.warning("[ConnectionManager] Connection test failed: %s",
                           outcome.get('error') or outcome.get('reason'))
            self.events.emit(EventType.CONNECTION_TEST_FAILED, self.last_connection_test)
        return outcome

    async def retry_connection(self) -> Dict[str, Any]:
        await self.test_connection()
        return self.get_connection_status()

    async def check_table_exists(self, table: str) -> bool:
        if not self.has_remote:
            return False
        try:
            return bool(await self.run_remote(
                lambda session: inspect(session.get_bind()).has_table(table),
                f'table check {table}'
            ))
        except PersistenceError as e:
            logger.warning("[ConnectionManager] Table check for %s failed: %s", table, e)
            return False

    def get_connection_status(self) -> Dict[str, Any]:
        return {
            'mode': self.resolve_mode().value,
            'is_connected': self.is_connected,
            'has_remote': self.has_remote,
            'force_local': self._force_local,
            'initialized': self.initialized,
            'last_connection_test': self.last_connection_test,
            'local_store_backend': self.local_store.backend.name,
        }

    async def get_debug_info(self) -> Dict[str, Any]:
        """Connection status, local record counts and, with a remote, the missing tables."""
        try:
            counts = await self.local_store.counts()
        except PersistenceError as e:
            counts = {'error': e.message}
        missing_tables = None
        if self.has_remote:
            try:
                missing_tables = await self.run_remote(
                    lambda session: find_missing_tables(session.get_bind()), 'schema check'
                )
            except PersistenceError as e:
                logger.warning("[ConnectionManager] Schema check failed: %s", e)
        return {
            'status': self.get_connection_status(),
            'local_counts': counts,
            'missing_tables': missing_tables,
            'namespace': self.local_store.namespace,
            'config': self.config.get_persistence_summary(),
        }

    async def clear_local_data(self) -> OperationResult:
        try:
            cleared = await self.local_store.clear()
        except PersistenceError as e:
            logger.error("[ConnectionManager] Clearing local data failed: %s", e)
            return OperationResult.fail(e.to_dict(), RecordSource.LOCAL)
        self.events.emit(EventType.LOCAL_DATA_CLEARED, {'keys': cleared}, source=RecordSource.LOCAL)
        return OperationResult.ok({'cleared': cleared}, RecordSource.LOCAL)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    async def upsert_profile(self, profile: Dict[str, Any]) -> OperationResult:
        """Create or replace a profile keyed by id (replace, no merge)."""
        try:
            record = ProfileUpsertRequest.model_validate(profile)
        except SchemaError as e:
            return OperationResult.fail(schema_error(e).to_dict())

        values = record.model_dump()

        def remote_work(session: Session):
            row = session.get(Profile, record.id)
            if row is None:
                row = Profile(**values)
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = utcnow()
            session.flush()
            return row.to_dict()

        async def remote():
            data = await self.run_remote(remote_work, 'upsert profile')
            await self.mirror(PROFILES, data)
            return data

        def local_mutation(data):
            rows = data[PROFILES]
            now = now_iso()
            existing = next((row for row in rows if row.get('id') == record.id), None)
            replacement = dict(values, created_at=existing.get('created_at', now) if existing else now,
                               updated_at=now, pending_sync=True)
            data[PROFILES] = [row for row in rows if row.get('id') != record.id] + [replacement]
            return replacement

        async def local():
            return await self.local_store.run((PROFILES,), local_mutation)

        result = await self.with_fallback('upsert profile', remote, local)
        if result.success:
            self.events.emit(EventType.PROFILE_UPSERTED, result.data, source=result.source)
        return result

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def execute_batch(self, operations: List[BatchOperation],
                            finalize: Optional[BatchOperation] = None,
                            description: str = 'batch') -> BatchResult:
        """
        Run independent writes concurrently on the remote; if any fails (or the
        finalize step does), re-run every operation plus finalize against the
        local store inside one local transaction. No partial-commit tracking.
        """
        if not operations:
            return BatchResult(success=True, results=[], source=None)

        if self.resolve_mode() is ConnectionMode.REMOTE:
            try:
                outcomes = await asyncio.gather(
                    *(self.run_remote(op.remote, op.description) for op in operations),
                    return_exceptions=True
                )
                failures = [o for o in outcomes if isinstance(o, BaseException)]
                if failures:
                    raise failures[0]
                finalized = None
                if finalize is not None:
                    finalized = await self.run_remote(finalize.remote, finalize.description)
                    if finalize.mirror_key:
                        await self.mirror(finalize.mirror_key, finalized)
                for op, outcome in zip(operations, outcomes):
                    if op.mirror_key:
                        await self.mirror(op.mirror_key, outcome)
                logger.debug("[ConnectionManager] %s: %d remote writes", description, len(operations))
                return BatchResult(success=True, results=list(outcomes), source=RecordSource.REMOTE,
                                   finalized=finalized)
            except ValidationError as e:
                return BatchResult(success=False, error=e.to_dict(), source=RecordSource.REMOTE)
            except Exception as e:  # pylint: disable=broad-except
                logger.warning(
                    "[ConnectionManager] %s failed remotely (%s), re-running %d writes locally",
                    description, e, len(operations)
                )

        keys = set()
        for op in operations:
            keys.update(op.keys)
        if finalize is not None:
            keys.update(finalize.keys)

        def apply_all(data):
            results = [op.local(data) for op in operations]
            finalized = finalize.local(data) if finalize is not None else None
            return results, finalized

        try:
            results, finalized = await self.local_store.run(keys, apply_all)
            return BatchResult(success=True, results=results, source=RecordSource.LOCAL,
                               finalized=finalized)
        except PersistenceError as e:
            logger.error("[ConnectionManager] %s failed locally: %s", description, e)
            return BatchResult(success=False, error=e.to_dict(), source=RecordSource.LOCAL)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("[ConnectionManager] %s failed locally: %s", description, e, exc_info=True)
            error = PersistenceError(f"{description} failed: {e}", error_code="UNEXPECTED")
            return BatchResult(success=False, error=error.to_dict(), source=RecordSource.LOCAL)


def _backfill_sort_order(data: Dict[str, List[Dict[str, Any]]]) -> int:
    """Give legacy local folders and diagrams lacking sort_order a dense rank."""
    filled = 0
    for key, parent_field in ((FOLDERS, 'parent_id'), (DIAGRAMS, 'folder_id')):
        rows = data[key]
        if all(isinstance(row.get('sort_order'), int) for row in rows):
            continue
        scopes: Dict[Tuple[Any, Any], List[Dict[str, Any]]] = {}
        for row in rows:
            if key == DIAGRAMS and row.get('is_active') is False:
                continue
            scopes.setdefault((row.get('project_id'), row.get(parent_field)), []).append(row)
        for siblings in scopes.values():
            if all(isinstance(row.get('sort_order'), int) for row in siblings):
                continue
            ranks = dense_ranks(siblings)
            for row in siblings:
                if row.get('sort_order') != ranks[row['id']]:
                    row['sort_order'] = ranks[row['id']]
                    filled += 1
    return filled
