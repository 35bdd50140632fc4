"""
Sibling order maintenance on both paths.

Folders are ordered within (project_id, parent_id) and active diagrams within
(project_id, folder_id). The SQL and local helpers below apply the same
ranking from services.persistence.ordering, and build the reorder batches
shared by the folder and diagram repositories.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from models.common import EventType, RecordSource
from models.domain import Diagram, Folder
from models.responses import OperationResult
from services.persistence.base_repository import find_row, strip_local_fields
from services.persistence.connection_manager import BatchOperation, ConnectionManager
from services.persistence.exceptions import NotFoundError
from services.persistence.local_store import DIAGRAMS, FOLDERS
from services.persistence.ordering import changed_ranks, next_sort_order, sort_records
from utils.timestamps import now_iso, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderScope:
    """How one entity type is grouped into sibling scopes."""
    key: str
    entity: str
    model: Any
    parent_field: str
    active_only: bool


FOLDER_SCOPE = OrderScope(FOLDERS, 'folder', Folder, 'parent_id', False)
DIAGRAM_SCOPE = OrderScope(DIAGRAMS, 'diagram', Diagram, 'folder_id', True)

ScopeId = Tuple[str, Optional[str]]

# Scope lock names, always acquired in this order
FOLDER_LOCK = 'folders'
DIAGRAM_LOCK = 'diagrams'


def _parent_filter(column, value):
    return column.is_(None) if value is None else column == value


# ============================================================================
# SQL side
# ============================================================================

def sql_siblings(session: Session, scope: OrderScope, project_id: str,
                 parent_value: Optional[str], exclude_id: Optional[str] = None) -> list:
    model = scope.model
    query = session.query(model).filter(
        model.project_id == project_id,
        _parent_filter(getattr(model, scope.parent_field), parent_value),
    )
    if scope.active_only:
        query = query.filter(model.is_active.is_(True))
    if exclude_id is not None:
        query = query.filter(model.id != exclude_id)
    return query.all()


def sql_next_order(session: Session, scope: OrderScope, project_id: str,
                   parent_value: Optional[str], exclude_id: Optional[str] = None) -> int:
    siblings = sql_siblings(session, scope, project_id, parent_value, exclude_id)
    return next_sort_order({'sort_order': row.sort_order} for row in siblings)


def sql_compact(session: Session, scope: OrderScope, project_id: str,
                parent_value: Optional[str],
                requested: Optional[Dict[str, float]] = None) -> List[Dict[str, Any]]:
    """Re-densify one scope; returns the rows whose sort_order changed."""
    rows = sql_siblings(session, scope, project_id, parent_value)
    by_id = {row.id: row for row in rows}
    changes = changed_ranks([row.to_dict() for row in rows], requested)
    for row_id, rank in changes.items():
        by_id[row_id].sort_order = rank
    if changes:
        session.flush()
    return [by_id[row_id].to_dict() for row_id in changes]


def sql_set_order(scope: OrderScope, record_id: str, sort_order: int, session: Session) -> Dict[str, Any]:
    """Single UPDATE of one row's sort_order (batch item)."""
    model = scope.model
    query = session.query(model).filter(model.id == record_id)
    if scope.active_only:
        query = query.filter(model.is_active.is_(True))
    updated = query.update({'sort_order': sort_order, 'updated_at': utcnow()},
                           synchronize_session=False)
    if not updated:
        raise NotFoundError(scope.entity, record_id)
    return session.get(model, record_id).to_dict()


# ============================================================================
# Local side
# ============================================================================

def in_local_scope(scope: OrderScope, row: Dict[str, Any], project_id: str,
                   parent_value: Optional[str]) -> bool:
    if row.get('project_id') != project_id or row.get(scope.parent_field) != parent_value:
        return False
    return not (scope.active_only and row.get('is_active') is False)


def local_siblings(rows: List[Dict[str, Any]], scope: OrderScope, project_id: str,
                   parent_value: Optional[str], exclude_id: Optional[str] = None) -> List[Dict[str, Any]]:
    return [
        row for row in rows
        if in_local_scope(scope, row, project_id, parent_value) and row.get('id') != exclude_id
    ]


def local_compact(rows: List[Dict[str, Any]], scope: OrderScope, project_id: str,
                  parent_value: Optional[str],
                  requested: Optional[Dict[str, float]] = None) -> List[Dict[str, Any]]:
    siblings = local_siblings(rows, scope, project_id, parent_value)
    by_id = {row['id']: row for row in siblings}
    changes = changed_ranks(siblings, requested)
    for row_id, rank in changes.items():
        by_id[row_id]['sort_order'] = rank
        by_id[row_id]['pending_sync'] = True
    return [strip_local_fields(by_id[row_id]) for row_id in changes]


def local_set_order(scope: OrderScope, record_id: str, sort_order: int,
                    data: Dict[str, Any]) -> Dict[str, Any]:
    row = find_row(data[scope.key], scope.entity, record_id)
    if scope.active_only and row.get('is_active') is False:
        raise NotFoundError(scope.entity, record_id)
    row['sort_order'] = sort_order
    row['updated_at'] = now_iso()
    row['pending_sync'] = True
    return strip_local_fields(row)


# ============================================================================
# Reorder batches
# ============================================================================

def _requested_by_scope(entries: Sequence[Tuple[OrderScope, str, int]]) -> Dict[OrderScope, Dict[str, int]]:
    requested: Dict[OrderScope, Dict[str, int]] = {}
    for scope, record_id, sort_order in entries:
        requested.setdefault(scope, {})[record_id] = sort_order
    return requested


def _finalize_sql(requested: Dict[OrderScope, Dict[str, int]], session: Session) -> Dict[str, List[dict]]:
    """Re-densify every scope a reorder touched; returns those scopes' rows."""
    result: Dict[str, List[dict]] = {}
    for scope, orders in requested.items():
        model = scope.model
        touched: Set[ScopeId] = {
            (row.project_id, getattr(row, scope.parent_field))
            for row in session.query(model).filter(model.id.in_(list(orders))).all()
        }
        rows: List[dict] = []
        for project_id, parent_value in sorted(touched, key=lambda s: (s[0], s[1] or '')):
            sql_compact(session, scope, project_id, parent_value, orders)
            rows.extend(sort_records(
                row.to_dict() for row in sql_siblings(session, scope, project_id, parent_value)
            ))
        result[scope.key] = rows
    return result


def _finalize_local(requested: Dict[OrderScope, Dict[str, int]], data: Dict[str, Any]) -> Dict[str, List[dict]]:
    result: Dict[str, List[dict]] = {}
    for scope, orders in requested.items():
        rows = data[scope.key]
        touched: Set[ScopeId] = {
            (row.get('project_id'), row.get(scope.parent_field))
            for row in rows if row.get('id') in orders
        }
        scoped: List[dict] = []
        for project_id, parent_value in sorted(touched, key=lambda s: (s[0] or '', s[1] or '')):
            local_compact(rows, scope, project_id, parent_value, orders)
            scoped.extend(strip_local_fields(row) for row in sort_records(
                local_siblings(rows, scope, project_id, parent_value)
            ))
        result[scope.key] = scoped
    return result


def build_reorder_batch(entries: Sequence[Tuple[OrderScope, str, int]],
                        description: str) -> Tuple[List[BatchOperation], BatchOperation]:
    """
    One independent write per entry plus a finalize step that re-densifies
    every touched scope (ranking the requested orders first).
    """
    operations = [
        BatchOperation(
            remote=partial(sql_set_order, scope, record_id, sort_order),
            local=partial(local_set_order, scope, record_id, sort_order),
            keys=(scope.key,),
            description=f"{description}: {scope.entity} {record_id}",
            mirror_key=scope.key,
        )
        for scope, record_id, sort_order in entries
    ]
    requested = _requested_by_scope(entries)
    finalize = BatchOperation(
        remote=partial(_finalize_sql, requested),
        local=partial(_finalize_local, requested),
        keys=tuple(sorted({scope.key for scope in requested})),
        description=f"{description}: compact",
    )
    return operations, finalize


@asynccontextmanager
async def scope_locks(connection: ConnectionManager, *names: str):
    """Hold the named scope locks, folders before diagrams."""
    order = (FOLDER_LOCK, DIAGRAM_LOCK)
    ranked = sorted(set(names), key=lambda name: order.index(name) if name in order else len(order))
    async with AsyncExitStack() as stack:
        for name in ranked:
            await stack.enter_async_context(connection.scope_lock(name))
        yield


async def run_reorder(connection: ConnectionManager,
                      entries: Sequence[Tuple[OrderScope, str, int]],
                      description: str, event: EventType) -> OperationResult:
    """
    Execute a reorder batch and publish event.

    data is {updated, folders, diagrams}: the number of rows re-stamped and
    the resulting rows of every touched sibling scope, in listing order.
    """
    if not entries:
        return OperationResult.ok({'updated': 0, FOLDERS: [], DIAGRAMS: []})
    operations, finalize = build_reorder_batch(entries, description)
    lock_names = {FOLDER_LOCK if scope.key == FOLDERS else DIAGRAM_LOCK for scope, _, _ in entries}
    async with scope_locks(connection, *lock_names):
        batch = await connection.execute_batch(operations, finalize, description)
    if not batch.success:
        return batch.to_result()

    finalized = batch.finalized or {}
    if batch.source is RecordSource.REMOTE:
        for key, rows in finalized.items():
            await connection.mirror(key, rows)
    data = {
        'updated': len(batch.results),
        FOLDERS: finalized.get(FOLDERS, []),
        DIAGRAMS: finalized.get(DIAGRAMS, []),
    }
    logger.debug("[SiblingOrder] %s: %d rows via %s", description, len(entries), batch.source.value)
    connection.events.emit(event, data, delta={'count': len(entries)}, source=batch.source)
    return batch.to_result(data)
