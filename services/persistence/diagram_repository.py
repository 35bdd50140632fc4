"""
Diagram Repository
==================

Diagrams with their content and version, collaboration sessions, and the
activity log.

Active diagrams are siblings when they share (project_id, folder_id).
Deleting a diagram is a soft delete (``is_active = False``); it leaves every
listing and its sibling scope is re-densified.

The diagram ``version`` is owned by the backend: callers cannot set it, and
every successful update increments it. ``version_number`` in an update is an
optimistic precondition checked on the remote path. A conflicting update is
retried once without the precondition; when that also fails the update is
merged into the local store.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import logging
from contextlib import nullcontext
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from models.common import EventType
from models.domain import ActivityLog, CollaborationSession, Diagram, Folder, generate_uuid
from models.requests import (
    ActivityLogRequest, DiagramCreateRequest, DiagramUpdateRequest, SessionUpsertRequest,
    SortOrderRequest
)
from models.responses import OperationResult
from services.persistence import ordering
from services.persistence.base_repository import BaseRepository, find_row, strip_local_fields
from services.persistence.exceptions import ConflictError, NotFoundError, ValidationError
from services.persistence.local_store import (
    ACTIVITY_LOGS, COLLABORATION_SESSIONS, DIAGRAMS, FOLDERS
)
from services.persistence.sibling_order import (
    DIAGRAM_LOCK, DIAGRAM_SCOPE, local_compact, local_siblings, run_reorder,
    sql_compact, sql_next_order
)
from utils.timestamps import from_iso, now_iso, utcnow

logger = logging.getLogger(__name__)

# Fields copied as-is by an update
_PLAIN_FIELDS = ('name', 'description', 'content', 'last_modified_by')
# Fields whose change moves the diagram within or between sibling scopes
_ORDER_FIELDS = ('folder_id', 'sort_order', 'is_active')
# Columns that may not be cleared by an update
_REQUIRED_FIELDS = ('name', 'content', 'sort_order', 'is_active')


def _update_values(record: DiagramUpdateRequest) -> Tuple[Dict[str, Any], Optional[int]]:
    """Caller values without the backend-owned version, plus the precondition."""
    values = record.model_dump(exclude_unset=True)
    values.pop('version', None)
    expected_version = values.pop('version_number', None)
    values = {
        key: value for key, value in values.items()
        if not (key in _REQUIRED_FIELDS and value is None)
    }
    return values, expected_version


def _check_folder(folder: Optional[Dict[str, Any]], folder_id: str, project_id: str):
    if folder is None:
        raise NotFoundError('folder', folder_id)
    if folder.get('project_id') != project_id:
        raise ValidationError(
            f"Folder {folder_id} belongs to another project",
            error_code="FOLDER_PROJECT_MISMATCH",
            context={'folder_id': folder_id, 'project_id': project_id}
        )


def _session_cutoff(minutes: int) -> datetime:
    return utcnow() - timedelta(minutes=minutes)


# ============================================================================
# Remote (SQL) operations
# ============================================================================

class DiagramSqlOps:
    """Units of work against the remote backend."""

    @staticmethod
    def _get(session: Session, diagram_id: str, active_only: bool = True) -> Diagram:
        diagram = session.get(Diagram, diagram_id)
        if diagram is None or (active_only and not diagram.is_active):
            raise NotFoundError('diagram', diagram_id)
        return diagram

    @staticmethod
    def create_diagram(session: Session, record: DiagramCreateRequest) -> Dict[str, Any]:
        if record.folder_id is not None:
            folder = session.get(Folder, record.folder_id)
            _check_folder(folder.to_dict() if folder else None, record.folder_id, record.project_id)
        now = utcnow()
        diagram = Diagram(
            id=generate_uuid(),
            project_id=record.project_id,
            folder_id=record.folder_id,
            name=record.name,
            description=record.description,
            content=record.content,
            version=1,
            sort_order=sql_next_order(session, DIAGRAM_SCOPE, record.project_id, record.folder_id),
            is_active=True,
            created_by=record.created_by,
            last_modified_by=record.created_by,
            created_at=now,
            updated_at=now,
        )
        session.add(diagram)
        session.flush()
        return diagram.to_dict()

    @staticmethod
    def get_project_diagrams(session: Session, project_id: str) -> List[Dict[str, Any]]:
        diagrams = (
            session.query(Diagram)
            .filter(Diagram.project_id == project_id, Diagram.is_active.is_(True))
            .order_by(Diagram.sort_order, Diagram.created_at, Diagram.id)
            .all()
        )
        return [diagram.to_dict() for diagram in diagrams]

    @staticmethod
    def get_diagram(session: Session, diagram_id: str) -> Dict[str, Any]:
        return DiagramSqlOps._get(session, diagram_id).to_dict()

    @staticmethod
    def update_diagram(session: Session, diagram_id: str, values: Dict[str, Any],
                       expected_version: Optional[int] = None) -> Tuple[dict, List[dict]]:
        diagram = DiagramSqlOps._get(session, diagram_id, active_only=False)

        if expected_version is not None:
            claimed = (
                session.query(Diagram)
                .filter(Diagram.id == diagram_id, Diagram.version == expected_version)
                .update({'version': Diagram.version + 1}, synchronize_session=False)
            )
            if not claimed:
                raise ConflictError(
                    f"Diagram {diagram_id} is no longer at version {expected_version}",
                    error_code="VERSION_CONFLICT",
                    context={'diagram_id': diagram_id, 'expected_version': expected_version,
                             'current_version': diagram.version}
                )
            session.refresh(diagram)
        else:
            diagram.version = (diagram.version or 0) + 1

        for key in _PLAIN_FIELDS:
            if key in values:
                setattr(diagram, key, values[key])

        changed: List[dict] = []
        project_id = diagram.project_id
        old_folder, was_active = diagram.folder_id, diagram.is_active
        new_folder = values.get('folder_id', old_folder)
        now_active = values.get('is_active', was_active)

        if new_folder != old_folder and new_folder is not None:
            folder = session.get(Folder, new_folder)
            _check_folder(folder.to_dict() if folder else None, new_folder, project_id)

        if new_folder != old_folder or now_active != was_active:
            if now_active:
                diagram.sort_order = sql_next_order(
                    session, DIAGRAM_SCOPE, project_id, new_folder, exclude_id=diagram_id
                )
            diagram.folder_id = new_folder
            diagram.is_active = now_active
            session.flush()
            if was_active:
                changed.extend(sql_compact(session, DIAGRAM_SCOPE, project_id, old_folder))

        if 'sort_order' in values and diagram.is_active:
            changed.extend(sql_compact(
                session, DIAGRAM_SCOPE, project_id, diagram.folder_id,
                {diagram_id: values['sort_order']}
            ))

        diagram.updated_at = utcnow()
        session.flush()
        return diagram.to_dict(), [row for row in changed if row['id'] != diagram_id]

    @staticmethod
    def delete_diagram(session: Session, diagram_id: str) -> Tuple[dict, List[dict]]:
        diagram = DiagramSqlOps._get(session, diagram_id)
        diagram.is_active = False
        diagram.updated_at = utcnow()
        session.flush()
        changed = sql_compact(session, DIAGRAM_SCOPE, diagram.project_id, diagram.folder_id)
        return diagram.to_dict(), changed

    @staticmethod
    def upsert_collaboration_session(session: Session, record: SessionUpsertRequest) -> Dict[str, Any]:
        row = (
            session.query(CollaborationSession)
            .filter(CollaborationSession.diagram_id == record.diagram_id,
                    CollaborationSession.user_id == record.user_id)
            .first()
        )
        if row is None:
            row = CollaborationSession(id=generate_uuid(), diagram_id=record.diagram_id,
                                       user_id=record.user_id)
            session.add(row)
        row.session_data = record.session_data
        row.last_activity = utcnow()
        row.is_active = True
        session.flush()
        return row.to_dict()

    @staticmethod
    def get_active_collaboration_sessions(session: Session, diagram_id: str,
                                          cutoff: datetime) -> List[Dict[str, Any]]:
        rows = (
            session.query(CollaborationSession)
            .filter(CollaborationSession.diagram_id == diagram_id,
                    CollaborationSession.is_active.is_(True),
                    CollaborationSession.last_activity > cutoff)
            .order_by(CollaborationSession.last_activity.desc(), CollaborationSession.id)
            .all()
        )
        return [row.to_dict() for row in rows]

    @staticmethod
    def end_collaboration_session(session: Session, diagram_id: str, user_id: str) -> Dict[str, Any]:
        row = (
            session.query(CollaborationSession)
            .filter(CollaborationSession.diagram_id == diagram_id,
                    CollaborationSession.user_id == user_id)
            .first()
        )
        if row is None:
            raise NotFoundError('session', f"{diagram_id}/{user_id}")
        row.is_active = False
        session.flush()
        return row.to_dict()

    @staticmethod
    def create_activity_log(session: Session, record: ActivityLogRequest) -> Dict[str, Any]:
        entry = ActivityLog(id=generate_uuid(), created_at=utcnow(), **record.model_dump())
        session.add(entry)
        session.flush()
        return entry.to_dict()

    @staticmethod
    def get_activity_logs(session: Session, project_id: str, limit: int) -> List[Dict[str, Any]]:
        rows = (
            session.query(ActivityLog)
            .filter(ActivityLog.project_id == project_id)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
            .limit(limit)
            .all()
        )
        return [row.to_dict() for row in rows]


# ============================================================================
# Local operations
# ============================================================================

class DiagramLocalOps:
    """The same operations as mutators over the local store values."""

    @staticmethod
    def _get(rows: List[Dict[str, Any]], diagram_id: str, active_only: bool = True) -> Dict[str, Any]:
        diagram = find_row(rows, 'diagram', diagram_id)
        if active_only and diagram.get('is_active') is False:
            raise NotFoundError('diagram', diagram_id)
        return diagram

    @staticmethod
    def _folder(data: Dict[str, Any], folder_id: str) -> Optional[Dict[str, Any]]:
        return next((row for row in data[FOLDERS] if row.get('id') == folder_id), None)

    @staticmethod
    def create_diagram(data: Dict[str, Any], record: DiagramCreateRequest) -> Dict[str, Any]:
        if record.folder_id is not None:
            _check_folder(DiagramLocalOps._folder(data, record.folder_id), record.folder_id,
                          record.project_id)
        rows = data[DIAGRAMS]
        now = now_iso()
        siblings = local_siblings(rows, DIAGRAM_SCOPE, record.project_id, record.folder_id)
        diagram = {
            'id': generate_uuid(),
            'project_id': record.project_id,
            'folder_id': record.folder_id,
            'name': record.name,
            'description': record.description,
            'content': record.content,
            'version': 1,
            'sort_order': ordering.next_sort_order(siblings),
            'is_active': True,
            'created_by': record.created_by,
            'last_modified_by': record.created_by,
            'created_at': now,
            'updated_at': now,
            'pending_sync': True,
        }
        rows.append(diagram)
        return strip_local_fields(diagram)

    @staticmethod
    def get_project_diagrams(data: Dict[str, Any], project_id: str) -> List[Dict[str, Any]]:
        rows = [
            strip_local_fields(row) for row in data[DIAGRAMS]
            if row.get('project_id') == project_id and row.get('is_active') is not False
        ]
        return ordering.sort_records(rows)

    @staticmethod
    def get_diagram(data: Dict[str, Any], diagram_id: str) -> Dict[str, Any]:
        return strip_local_fields(DiagramLocalOps._get(data[DIAGRAMS], diagram_id))

    @staticmethod
    def update_diagram(data: Dict[str, Any], diagram_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Unconditioned merge-update; still increments version."""
        rows = data[DIAGRAMS]
        diagram = DiagramLocalOps._get(rows, diagram_id, active_only=False)
        diagram['version'] = (diagram.get('version') or 0) + 1
        for key in _PLAIN_FIELDS:
            if key in values:
                diagram[key] = values[key]

        project_id = diagram.get('project_id')
        old_folder = diagram.get('folder_id')
        was_active = diagram.get('is_active') is not False
        new_folder = values.get('folder_id', old_folder)
        now_active = values.get('is_active', was_active)

        if new_folder != old_folder and new_folder is not None:
            _check_folder(DiagramLocalOps._folder(data, new_folder), new_folder, project_id)

        if new_folder != old_folder or now_active != was_active:
            if now_active:
                siblings = local_siblings(rows, DIAGRAM_SCOPE, project_id, new_folder, exclude_id=diagram_id)
                diagram['sort_order'] = ordering.next_sort_order(siblings)
            diagram['folder_id'] = new_folder
            diagram['is_active'] = now_active
            if was_active:
                local_compact(rows, DIAGRAM_SCOPE, project_id, old_folder)

        if 'sort_order' in values and diagram['is_active']:
            local_compact(rows, DIAGRAM_SCOPE, project_id, diagram['folder_id'],
                          {diagram_id: values['sort_order']})

        diagram['updated_at'] = now_iso()
        diagram['pending_sync'] = True
        return strip_local_fields(diagram)

    @staticmethod
    def delete_diagram(data: Dict[str, Any], diagram_id: str) -> Dict[str, Any]:
        rows = data[DIAGRAMS]
        diagram = DiagramLocalOps._get(rows, diagram_id)
        diagram['is_active'] = False
        diagram['updated_at'] = now_iso()
        diagram['pending_sync'] = True
        local_compact(rows, DIAGRAM_SCOPE, diagram.get('project_id'), diagram.get('folder_id'))
        return strip_local_fields(diagram)

    @staticmethod
    def upsert_collaboration_session(data: Dict[str, Any], record: SessionUpsertRequest) -> Dict[str, Any]:
        rows = data[COLLABORATION_SESSIONS]
        row = next((r for r in rows if r.get('diagram_id') == record.diagram_id
                    and r.get('user_id') == record.user_id), None)
        if row is None:
            row = {'id': generate_uuid(), 'diagram_id': record.diagram_id, 'user_id': record.user_id}
            rows.append(row)
        row.update(session_data=record.session_data, last_activity=now_iso(),
                   is_active=True, pending_sync=True)
        return strip_local_fields(row)

    @staticmethod
    def get_active_collaboration_sessions(data: Dict[str, Any], diagram_id: str,
                                          cutoff: datetime) -> List[Dict[str, Any]]:
        live = [
            strip_local_fields(row) for row in data[COLLABORATION_SESSIONS]
            if row.get('diagram_id') == diagram_id and row.get('is_active')
            and (from_iso(row.get('last_activity')) or datetime.min) > cutoff
        ]
        live.sort(key=lambda row: str(row.get('id')))
        return sorted(live, key=lambda row: from_iso(row['last_activity']), reverse=True)

    @staticmethod
    def end_collaboration_session(data: Dict[str, Any], diagram_id: str, user_id: str) -> Dict[str, Any]:
        row = next((r for r in data[COLLABORATION_SESSIONS] if r.get('diagram_id') == diagram_id
                    and r.get('user_id') == user_id), None)
        if row is None:
            raise NotFoundError('session', f"{diagram_id}/{user_id}")
        row['is_active'] = False
        row['pending_sync'] = True
        return strip_local_fields(row)

    @staticmethod
    def create_activity_log(data: Dict[str, Any], record: ActivityLogRequest, limit: int) -> Dict[str, Any]:
        entry = dict(record.model_dump(), id=generate_uuid(), created_at=now_iso(), pending_sync=True)
        logs = data[ACTIVITY_LOGS]
        logs.append(entry)
        if len(logs) > limit:
            data[ACTIVITY_LOGS] = logs[-limit:]
        return strip_local_fields(entry)

    @staticmethod
    def get_activity_logs(data: Dict[str, Any], project_id: str, limit: int) -> List[Dict[str, Any]]:
        rows = [strip_local_fields(row) for row in data[ACTIVITY_LOGS] if row.get('project_id') == project_id]
        rows.sort(key=lambda row: str(row.get('id')), reverse=True)
        rows.sort(key=lambda row: str(row.get('created_at') or ''), reverse=True)
        return rows[:limit]


# ============================================================================
# Repository
# ============================================================================

class DiagramRepository(BaseRepository):
    """Diagrams, collaboration sessions and the activity log."""

    component = 'DiagramRepo'

    async def _write_remote(self, work, description: str) -> Dict[str, Any]:
        record, changed = await self.connection.run_remote(work, description)
        await self.connection.mirror(DIAGRAMS, [record] + changed)
        return record

    async def create_diagram(self, data: Dict[str, Any]) -> OperationResult:
        """New active diagram at version 1, last among its siblings."""
        try:
            record = self._validate(DiagramCreateRequest, data)
        except ValidationError as e:
            return self._invalid(e)

        async def remote():
            return await self._remote(
                lambda s: DiagramSqlOps.create_diagram(s, record), 'create diagram',
                mirror_key=DIAGRAMS
            )

        async def local():
            return await self._local(
                (DIAGRAMS, FOLDERS), lambda d: DiagramLocalOps.create_diagram(d, record)
            )

        async with self.connection.scope_lock(DIAGRAM_LOCK):
            result = await self._call('create diagram', remote, local, EventType.DIAGRAM_CREATED)
        if result.success:
            logger.info("[DiagramRepo] Diagram created: %s (%s)", result.data['id'], result.source.value)
        return result

    async def update_diagram(self, diagram_id: str, updates: Dict[str, Any]) -> OperationResult:
        try:
            record = self._validate(DiagramUpdateRequest, updates)
        except ValidationError as e:
            return self._invalid(e)
        values, expected_version = _update_values(record)

        async def remote():
            try:
                return await self._write_remote(
                    lambda s: DiagramSqlOps.update_diagram(s, diagram_id, values, expected_version),
                    'update diagram'
                )
            except ConflictError as e:
                logger.warning("[DiagramRepo] Update of %s conflicted (%s), retrying without version",
                               diagram_id, e)
            return await self._write_remote(
                lambda s: DiagramSqlOps.update_diagram(s, diagram_id, values), 'update diagram (retry)'
            )

        async def local():
            return await self._local(
                (DIAGRAMS, FOLDERS), lambda d: DiagramLocalOps.update_diagram(d, diagram_id, values)
            )

        reorders = any(key in values for key in _ORDER_FIELDS)
        async with self.connection.scope_lock(DIAGRAM_LOCK) if reorders else nullcontext():
            return await self._call('update diagram', remote, local, EventType.DIAGRAM_UPDATED,
                                    delta=values)

    async def copy_diagram(self, diagram_id: str, new_name: Optional[str] = None) -> OperationResult:
        """Duplicate a diagram into the same project and folder."""
        original = await self.get_diagram(diagram_id)
        if not original.success:
            return original
        source = original.data
        return await self.create_diagram({
            'project_id': source['project_id'],
            'folder_id': source.get('folder_id'),
            'name': new_name or f"{source['name']} (Copy)",
            'description': source.get('description'),
            'content': source.get('content') or '',
            'created_by': source.get('last_modified_by') or source.get('created_by'),
        })

    async def get_project_diagrams(self, project_id: str) -> OperationResult:
        """Active diagrams of a project ordered by sort_order."""
        async def remote():
            rows = await self._remote(
                lambda s: DiagramSqlOps.get_project_diagrams(s, project_id), 'get project diagrams',
                mirror_key=DIAGRAMS, is_read=True
            )
            return await self._overlay(
                rows, DIAGRAMS, lambda row: row.get('project_id') == project_id,
                visible=lambda row: row.get('is_active') is not False
            )

        async def local():
            return await self._local(
                (DIAGRAMS,), lambda d: DiagramLocalOps.get_project_diagrams(d, project_id), write=False
            )

        return await self._call('get project diagrams', remote, local,
                                EventType.PROJECT_DIAGRAMS_FETCHED, delta={'project_id': project_id})

    async def get_diagram(self, diagram_id: str) -> OperationResult:
        async def remote():
            row = await self._remote(
                lambda s: DiagramSqlOps.get_diagram(s, diagram_id), 'get diagram',
                mirror_key=DIAGRAMS, is_read=True
            )
            row = await self._overlay_one(row, DIAGRAMS)
            if row.get('is_active') is False:
                raise NotFoundError('diagram', diagram_id)
            return row

        async def local():
            return await self._local(
                (DIAGRAMS,), lambda d: DiagramLocalOps.get_diagram(d, diagram_id), write=False
            )

        return await self._call('get diagram', remote, local)

    async def delete_diagram(self, diagram_id: str) -> OperationResult:
        """Soft delete: the diagram leaves all listings, its row is kept."""
        async def remote():
            return await self._write_remote(
                lambda s: DiagramSqlOps.delete_diagram(s, diagram_id), 'delete diagram'
            )

        async def local():
            return await self._local((DIAGRAMS,), lambda d: DiagramLocalOps.delete_diagram(d, diagram_id))

        async with self.connection.scope_lock(DIAGRAM_LOCK):
            return await self._call('delete diagram', remote, local, EventType.DIAGRAM_DELETED)

    async def update_diagram_order(self, diagrams: List[Dict[str, Any]]) -> OperationResult:
        """Apply {id, sort_order} pairs; every touched sibling scope ends dense."""
        try:
            records = [self._validate(SortOrderRequest, item) for item in diagrams or []]
        except ValidationError as e:
            return self._invalid(e)
        entries = [(DIAGRAM_SCOPE, record.id, record.sort_order) for record in records]
        return await run_reorder(self.connection, entries, 'update diagram order',
                                 EventType.DIAGRAM_ORDER_UPDATED)

    # ------------------------------------------------------------------
    # Collaboration sessions
    # ------------------------------------------------------------------

    async def upsert_collaboration_session(self, data: Dict[str, Any]) -> OperationResult:
        """Heartbeat keyed by (diagram_id, user_id)."""
        try:
            record = self._validate(SessionUpsertRequest, data)
        except ValidationError as e:
            return self._invalid(e)

        async def remote():
            return await self._remote(
                lambda s: DiagramSqlOps.upsert_collaboration_session(s, record), 'upsert session',
                mirror_key=COLLABORATION_SESSIONS
            )

        async def local():
            return await self._local(
                (COLLABORATION_SESSIONS,), lambda d: DiagramLocalOps.upsert_collaboration_session(d, record)
            )

        return await self._call('upsert collaboration session', remote, local,
                                EventType.COLLABORATION_SESSION_UPSERTED)

    async def get_active_collaboration_sessions(self, diagram_id: str) -> OperationResult:
        """Active sessions with activity inside the liveness window."""
        cutoff = _session_cutoff(self.connection.config.SESSION_LIVENESS_MINUTES)

        async def remote():
            return await self.connection.run_remote(
                lambda s: DiagramSqlOps.get_active_collaboration_sessions(s, diagram_id, cutoff),
                'get active sessions'
            )

        async def local():
            return await self._local(
                (COLLABORATION_SESSIONS,),
                lambda d: DiagramLocalOps.get_active_collaboration_sessions(d, diagram_id, cutoff),
                write=False
            )

        return await self._call('get active collaboration sessions', remote, local)

    async def end_collaboration_session(self, diagram_id: str, user_id: str) -> OperationResult:
        async def remote():
            return await self._remote(
                lambda s: DiagramSqlOps.end_collaboration_session(s, diagram_id, user_id),
                'end session', mirror_key=COLLABORATION_SESSIONS
            )

        async def local():
            return await self._local(
                (COLLABORATION_SESSIONS,),
                lambda d: DiagramLocalOps.end_collaboration_session(d, diagram_id, user_id)
            )

        return await self._call('end collaboration session', remote, local,
                                EventType.COLLABORATION_SESSION_ENDED)

    # ------------------------------------------------------------------
    # Activity log
    # ------------------------------------------------------------------

    async def create_activity_log(self, entry: Dict[str, Any]) -> OperationResult:
        """Append-only; the local store keeps the newest ACTIVITY_LOG_LIMIT entries."""
        try:
            record = self._validate(ActivityLogRequest, entry)
        except ValidationError as e:
            return self._invalid(e)
        limit = self.connection.config.ACTIVITY_LOG_LIMIT

        async def remote():
            return await self.connection.run_remote(
                lambda s: DiagramSqlOps.create_activity_log(s, record), 'create activity log'
            )

        async def local():
            return await self._local(
                (ACTIVITY_LOGS,), lambda d: DiagramLocalOps.create_activity_log(d, record, limit)
            )

        return await self._call('create activity log', remote, local, EventType.ACTIVITY_LOG_CREATED)

    async def get_activity_logs(self, project_id: str, limit: int = 50) -> OperationResult:
        """Newest entries of a project first."""
        if limit < 1:
            return self._invalid(ValidationError("limit must be positive", context={'limit': limit}))

        async def remote():
            return await self.connection.run_remote(
                lambda s: DiagramSqlOps.get_activity_logs(s, project_id, limit), 'get activity logs'
            )

        async def local():
            return await self._local(
                (ACTIVITY_LOGS,), lambda d: DiagramLocalOps.get_activity_logs(d, project_id, limit),
                write=False
            )

        return await self._call('get activity logs', remote, local)
