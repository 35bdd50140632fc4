"""
Base Repository
===============

Shared plumbing of the project, folder and diagram repositories: record
validation, remote calls that mirror into the local store, local
transactions, the pending-sync overlay on reads, and event publishing.

Each repository pairs a SQL operations class (units of work on a
SQLAlchemy session) with a local operations class (mutators on the local
store values) that expose the same operations under the same names; the
connection manager's with_fallback chooses between them per call.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError
from sqlalchemy.orm import Session

from models.common import EventType
from models.responses import OperationResult
from services.persistence.connection_manager import ConnectionManager, schema_error
from services.persistence.exceptions import NotFoundError, ValidationError
from services.persistence.ordering import sort_key

logger = logging.getLogger(__name__)

M = TypeVar('M', bound=BaseModel)


def find_row(rows: List[Dict[str, Any]], entity: str, record_id: str) -> Dict[str, Any]:
    """Row with the given id, or NotFoundError."""
    for row in rows:
        if row.get('id') == record_id:
            return row
    raise NotFoundError(entity, record_id)


def strip_local_fields(row: Dict[str, Any]) -> Dict[str, Any]:
    """Public view of a local row (without sync bookkeeping)."""
    return {key: value for key, value in row.items() if key != 'pending_sync'}


class BaseRepository:
    """Common operations for all repositories."""

    component = 'Repository'

    def __init__(self, connection: ConnectionManager):
        self.connection = connection
        self.store = connection.local_store
        self.events = connection.events

    @staticmethod
    def _validate(model: Type[M], data: Any) -> M:
        """Build a record, raising our ValidationError on bad input."""
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data or {})
        except SchemaError as e:
            raise schema_error(e) from e

    @staticmethod
    def _invalid(error: ValidationError) -> OperationResult:
        return OperationResult.fail(error.to_dict())

    async def _remote(self, work: Callable[[Session], Any], description: str,
                      mirror_key: Optional[str] = None,
                      removed: Optional[Callable[[Any], Iterable[str]]] = None,
                      is_read: bool = False) -> Any:
        """run_remote, then copy the result into the local store."""
        data = await self.connection.run_remote(work, description)
        if mirror_key:
            removed_ids = removed(data) if removed else None
            await self.connection.mirror(
                mirror_key, data, removed_ids=removed_ids, overwrite_pending=not is_read
            )
        return data

    async def _local(self, keys: Iterable[str], fn: Callable[[Dict[str, Any]], Any],
                     write: bool = True) -> Any:
        return await self.store.run(tuple(keys), fn, write=write)

    async def _pending_rows(self, key: str,
                            predicate: Callable[[Dict[str, Any]], bool]) -> List[Dict[str, Any]]:
        """Local rows written during a fallback and not yet synchronised."""
        try:
            rows = await self.store.read(key)
        except Exception as e:  # pylint: disable=broad-except
            logger.warning("[%s] Could not read pending %s: %s", self.component, key, e)
            return []
        return [row for row in rows if row.get('pending_sync') and predicate(row)]

    async def _overlay(self, remote_rows: List[Dict[str, Any]], key: str,
                       predicate: Callable[[Dict[str, Any]], bool],
                       visible: Callable[[Dict[str, Any]], bool] = lambda row: True,
                       order: Optional[Callable[[Dict[str, Any]], Any]] = sort_key) -> List[Dict[str, Any]]:
        """
        Merge remote rows with local rows still pending sync: a pending row
        replaces the remote row with the same id, or is appended. Rows failing
        visible (soft-deleted ones) are dropped after the merge.
        """
        pending = await self._pending_rows(key, predicate)
        if not pending:
            return [row for row in remote_rows if visible(row)]
        merged = {row['id']: row for row in remote_rows}
        for row in pending:
            merged[row['id']] = strip_local_fields(row)
        rows = [row for row in merged.values() if visible(row)]
        return sorted(rows, key=order) if order else rows

    async def _overlay_one(self, remote_row: Dict[str, Any], key: str) -> Dict[str, Any]:
        pending = await self._pending_rows(key, lambda row: row.get('id') == remote_row.get('id'))
        return strip_local_fields(pending[0]) if pending else remote_row

    async def _call(self, operation: str, remote: Optional[Callable[[], Any]],
                    local: Callable[[], Any], event: Optional[EventType] = None,
                    delta: Optional[Dict[str, Any]] = None,
                    event_record: Optional[Callable[[Any], Any]] = None) -> OperationResult:
        """with_fallback, then publish event on success."""
        result = await self.connection.with_fallback(
            f"[{self.component}] {operation}", remote, local
        )
        if result.success and event is not None:
            record = event_record(result.data) if event_record else result.data
            self.events.emit(event, record, delta, result.source)
        return result
