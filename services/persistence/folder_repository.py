"""
Folder Repository
=================

Folder tree of a project: create, rename, move, reorder, cascade delete.

Folders are siblings when they share (project_id, parent_id). Every write
that changes membership or order of a sibling scope leaves that scope dense
(sort orders 0..N-1). Order-changing writes hold the ``folders`` scope lock
of the connection manager (then ``diagrams`` when diagrams are touched too),
so concurrent creates under one parent never share an order.

Deleting a folder removes its whole subtree; diagrams filed under any
removed folder are soft-deleted and leave every listing.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from models.common import EventType, ItemType
from models.domain import Diagram, Folder, generate_uuid
from models.requests import FolderCreateRequest, FolderUpdateRequest, ItemOrderRequest, SortOrderRequest
from models.responses import OperationResult
from services.persistence import ordering
from services.persistence.base_repository import BaseRepository, find_row, strip_local_fields
from services.persistence.exceptions import NotFoundError, ValidationError
from services.persistence.local_store import DIAGRAMS, FOLDERS
from services.persistence.sibling_order import (
    DIAGRAM_LOCK, DIAGRAM_SCOPE, FOLDER_LOCK, FOLDER_SCOPE, local_compact, local_siblings,
    run_reorder, scope_locks, sql_compact, sql_next_order
)
from utils.timestamps import now_iso, utcnow

logger = logging.getLogger(__name__)


def _update_values(record: FolderUpdateRequest) -> Dict[str, Any]:
    values = record.model_dump(exclude_unset=True)
    if values.get('name', '') is None:
        values.pop('name')
    if values.get('sort_order', 0) is None:
        values.pop('sort_order')
    return values


def _check_parent(parent: Optional[Dict[str, Any]], parent_id: str, project_id: str):
    if parent is None:
        raise NotFoundError('folder', parent_id, f"Parent folder {parent_id} not found")
    if parent.get('project_id') != project_id:
        raise ValidationError(
            f"Parent folder {parent_id} belongs to another project",
            error_code="PARENT_PROJECT_MISMATCH",
            context={'parent_id': parent_id, 'project_id': project_id}
        )


def folder_path(names: List[str], folder_id: str) -> Dict[str, Any]:
    return {'id': folder_id, 'path': '/'.join(names), 'names': names}


# ============================================================================
# Remote (SQL) operations
# ============================================================================

class FolderSqlOps:
    """
    Units of work against the remote backend.

    Writes return (record, changed_rows) where changed_rows are siblings
    whose sort_order moved, to be mirrored locally alongside the record.
    """

    @staticmethod
    def _get(session: Session, folder_id: str) -> Folder:
        folder = session.get(Folder, folder_id)
        if folder is None:
            raise NotFoundError('folder', folder_id)
        return folder

    @staticmethod
    def _project_folders(session: Session, project_id: str) -> List[Folder]:
        return (
            session.query(Folder)
            .filter(Folder.project_id == project_id)
            .order_by(Folder.sort_order, Folder.created_at, Folder.id)
            .all()
        )

    @staticmethod
    def create_folder(session: Session, record: FolderCreateRequest) -> Tuple[dict, List[dict]]:
        if record.parent_id is not None:
            parent = session.get(Folder, record.parent_id)
            _check_parent(parent.to_dict() if parent else None, record.parent_id, record.project_id)
        now = utcnow()
        folder = Folder(
            id=generate_uuid(),
            project_id=record.project_id,
            parent_id=record.parent_id,
            name=record.name,
            sort_order=sql_next_order(session, FOLDER_SCOPE, record.project_id, record.parent_id),
            created_by=record.created_by,
            created_at=now,
            updated_at=now,
        )
        session.add(folder)
        session.flush()
        return folder.to_dict(), []

    @staticmethod
    def get_project_folders(session: Session, project_id: str) -> List[Dict[str, Any]]:
        return [folder.to_dict() for folder in FolderSqlOps._project_folders(session, project_id)]

    @staticmethod
    def get_folder(session: Session, folder_id: str) -> Dict[str, Any]:
        return FolderSqlOps._get(session, folder_id).to_dict()

    @staticmethod
    def update_folder(session: Session, folder_id: str,
                      values: Dict[str, Any]) -> Tuple[dict, List[dict]]:
        folder = FolderSqlOps._get(session, folder_id)
        old_parent = folder.parent_id
        changed: List[dict] = []

        if 'name' in values:
            folder.name = values['name']

        new_parent = values.get('parent_id', old_parent)
        if new_parent != old_parent:
            if new_parent is not None:
                parent = session.get(Folder, new_parent)
                _check_parent(parent.to_dict() if parent else None, new_parent, folder.project_id)
            folder.sort_order = sql_next_order(
                session, FOLDER_SCOPE, folder.project_id, new_parent, exclude_id=folder.id
            )
            folder.parent_id = new_parent
            session.flush()
            changed.extend(sql_compact(session, FOLDER_SCOPE, folder.project_id, old_parent))

        if 'sort_order' in values:
            changed.extend(sql_compact(
                session, FOLDER_SCOPE, folder.project_id, folder.parent_id,
                {folder.id: values['sort_order']}
            ))

        folder.updated_at = utcnow()
        session.flush()
        return folder.to_dict(), [row for row in changed if row['id'] != folder.id]

    @staticmethod
    def delete_folder(session: Session, folder_id: str) -> Tuple[dict, List[dict], List[dict]]:
        folder = FolderSqlOps._get(session, folder_id)
        project_id, parent_id = folder.project_id, folder.parent_id
        tree = [
            {'id': row.id, 'parent_id': row.parent_id}
            for row in session.query(Folder.id, Folder.parent_id).filter(Folder.project_id == project_id)
        ]
        doomed = ordering.collect_descendants(tree, folder_id) | {folder_id}

        now = utcnow()
        diagrams = (
            session.query(Diagram)
            .filter(Diagram.folder_id.in_(doomed), Diagram.is_active.is_(True))
            .all()
        )
        for diagram in diagrams:
            diagram.is_active = False
            diagram.updated_at = now
        session.flush()
        diagram_rows = [diagram.to_dict() for diagram in diagrams]

        session.query(Folder).filter(Folder.id.in_(doomed)).delete(synchronize_session=False)
        session.expire_all()
        changed = sql_compact(session, FOLDER_SCOPE, project_id, parent_id)

        result = {
            'id': folder_id,
            'deleted_ids': sorted(doomed),
            'deleted_diagram_ids': sorted(row['id'] for row in diagram_rows),
        }
        return result, changed, diagram_rows

    @staticmethod
    def get_folder_stats(session: Session, folder_id: str) -> Dict[str, int]:
        FolderSqlOps._get(session, folder_id)
        subfolders = session.query(Folder).filter(Folder.parent_id == folder_id).count()
        diagrams = (
            session.query(Diagram)
            .filter(Diagram.folder_id == folder_id, Diagram.is_active.is_(True))
            .count()
        )
        return {'subfolder_count': subfolders, 'diagram_count': diagrams,
                'total_items': subfolders + diagrams}

    @staticmethod
    def get_folder_path(session: Session, folder_id: str) -> Dict[str, Any]:
        folder = FolderSqlOps._get(session, folder_id)
        rows = [row.to_dict() for row in FolderSqlOps._project_folders(session, folder.project_id)]
        return folder_path(ordering.build_folder_path(rows, folder_id), folder_id)


# ============================================================================
# Local operations
# ============================================================================

class FolderLocalOps:
    """The same operations as mutators over the local store values."""

    @staticmethod
    def _parent(rows: List[Dict[str, Any]], parent_id: str) -> Optional[Dict[str, Any]]:
        return next((row for row in rows if row.get('id') == parent_id), None)

    @staticmethod
    def create_folder(data: Dict[str, Any], record: FolderCreateRequest) -> Dict[str, Any]:
        rows = data[FOLDERS]
        if record.parent_id is not None:
            _check_parent(FolderLocalOps._parent(rows, record.parent_id), record.parent_id,
                          record.project_id)
        now = now_iso()
        siblings = local_siblings(rows, FOLDER_SCOPE, record.project_id, record.parent_id)
        folder = {
            'id': generate_uuid(),
            'project_id': record.project_id,
            'parent_id': record.parent_id,
            'name': record.name,
            'sort_order': ordering.next_sort_order(siblings),
            'created_by': record.created_by,
            'created_at': now,
            'updated_at': now,
            'pending_sync': True,
        }
        rows.append(folder)
        return strip_local_fields(folder)

    @staticmethod
    def get_project_folders(data: Dict[str, Any], project_id: str) -> List[Dict[str, Any]]:
        rows = [strip_local_fields(row) for row in data[FOLDERS] if row.get('project_id') == project_id]
        return ordering.sort_records(rows)

    @staticmethod
    def get_folder(data: Dict[str, Any], folder_id: str) -> Dict[str, Any]:
        return strip_local_fields(find_row(data[FOLDERS], 'folder', folder_id))

    @staticmethod
    def update_folder(data: Dict[str, Any], folder_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        rows = data[FOLDERS]
        folder = find_row(rows, 'folder', folder_id)
        project_id = folder.get('project_id')
        old_parent = folder.get('parent_id')

        if 'name' in values:
            folder['name'] = values['name']

        new_parent = values.get('parent_id', old_parent)
        if new_parent != old_parent:
            if new_parent is not None:
                _check_parent(FolderLocalOps._parent(rows, new_parent), new_parent, project_id)
            siblings = local_siblings(rows, FOLDER_SCOPE, project_id, new_parent, exclude_id=folder_id)
            folder['sort_order'] = ordering.next_sort_order(siblings)
            folder['parent_id'] = new_parent
            local_compact(rows, FOLDER_SCOPE, project_id, old_parent)

        if 'sort_order' in values:
            local_compact(rows, FOLDER_SCOPE, project_id, folder['parent_id'],
                          {folder_id: values['sort_order']})

        folder['updated_at'] = now_iso()
        folder['pending_sync'] = True
        return strip_local_fields(folder)

    @staticmethod
    def delete_folder(data: Dict[str, Any], folder_id: str) -> Dict[str, Any]:
        rows = data[FOLDERS]
        folder = find_row(rows, 'folder', folder_id)
        project_id, parent_id = folder.get('project_id'), folder.get('parent_id')
        project_rows = [row for row in rows if row.get('project_id') == project_id]
        doomed = ordering.collect_descendants(project_rows, folder_id) | {folder_id}

        now = now_iso()
        removed_diagrams = []
        for diagram in data[DIAGRAMS]:
            if diagram.get('folder_id') in doomed and diagram.get('is_active') is not False:
                diagram['is_active'] = False
                diagram['updated_at'] = now
                diagram['pending_sync'] = True
                removed_diagrams.append(diagram['id'])

        data[FOLDERS] = [row for row in rows if row.get('id') not in doomed]
        local_compact(data[FOLDERS], FOLDER_SCOPE, project_id, parent_id)
        return {
            'id': folder_id,
            'deleted_ids': sorted(doomed),
            'deleted_diagram_ids': sorted(removed_diagrams),
        }

    @staticmethod
    def get_folder_stats(data: Dict[str, Any], folder_id: str) -> Dict[str, int]:
        find_row(data[FOLDERS], 'folder', folder_id)
        subfolders = sum(1 for row in data[FOLDERS] if row.get('parent_id') == folder_id)
        diagrams = sum(
            1 for row in data[DIAGRAMS]
            if row.get('folder_id') == folder_id and row.get('is_active') is not False
        )
        return {'subfolder_count': subfolders, 'diagram_count': diagrams,
                'total_items': subfolders + diagrams}

    @staticmethod
    def get_folder_path(data: Dict[str, Any], folder_id: str) -> Dict[str, Any]:
        find_row(data[FOLDERS], 'folder', folder_id)
        return folder_path(ordering.build_folder_path(data[FOLDERS], folder_id), folder_id)


# ============================================================================
# Repository
# ============================================================================

class FolderRepository(BaseRepository):
    """Folder tree with remote-then-local fallback."""

    component = 'FolderRepo'

    async def _write_remote(self, work, description: str) -> Dict[str, Any]:
        """Run a (record, changed siblings) unit of work and mirror both."""
        record, changed = await self.connection.run_remote(work, description)
        await self.connection.mirror(FOLDERS, [record] + changed)
        return record

    async def create_folder(self, data: Dict[str, Any]) -> OperationResult:
        """New folder placed last among its siblings."""
        try:
            record = self._validate(FolderCreateRequest, data)
        except ValidationError as e:
            return self._invalid(e)

        async def remote():
            return await self._write_remote(
                lambda s: FolderSqlOps.create_folder(s, record), 'create folder'
            )

        async def local():
            return await self._local((FOLDERS,), lambda d: FolderLocalOps.create_folder(d, record))

        async with self.connection.scope_lock(FOLDER_LOCK):
            result = await self._call('create folder', remote, local, EventType.FOLDER_CREATED)
        if result.success:
            logger.debug("[FolderRepo] Folder created: %s at %s",
                         result.data['id'], result.data['sort_order'])
        return result

    async def get_project_folders(self, project_id: str) -> OperationResult:
        """All folders of a project ordered by sort_order."""
        async def remote():
            rows = await self._remote(
                lambda s: FolderSqlOps.get_project_folders(s, project_id), 'get project folders',
                mirror_key=FOLDERS, is_read=True
            )
            return await self._overlay(rows, FOLDERS, lambda row: row.get('project_id') == project_id)

        async def local():
            return await self._local(
                (FOLDERS,), lambda d: FolderLocalOps.get_project_folders(d, project_id), write=False
            )

        return await self._call('get project folders', remote, local,
                                EventType.PROJECT_FOLDERS_FETCHED, delta={'project_id': project_id})

    async def get_folder(self, folder_id: str) -> OperationResult:
        async def remote():
            row = await self._remote(
                lambda s: FolderSqlOps.get_folder(s, folder_id), 'get folder',
                mirror_key=FOLDERS, is_read=True
            )
            return await self._overlay_one(row, FOLDERS)

        async def local():
            return await self._local(
                (FOLDERS,), lambda d: FolderLocalOps.get_folder(d, folder_id), write=False
            )

        return await self._call('get folder', remote, local)

    async def _update(self, folder_id: str, values: Dict[str, Any], operation: str,
                      event: EventType) -> OperationResult:
        async def remote():
            return await self._write_remote(
                lambda s: FolderSqlOps.update_folder(s, folder_id, values), operation
            )

        async def local():
            return await self._local(
                (FOLDERS,), lambda d: FolderLocalOps.update_folder(d, folder_id, values)
            )

        async with self.connection.scope_lock(FOLDER_LOCK):
            return await self._call(operation, remote, local, event, delta=values)

    async def update_folder(self, folder_id: str, updates: Dict[str, Any]) -> OperationResult:
        """
        Update name, parent or position.

        A parent change places the folder last among its new siblings and
        re-densifies the scope it left. Cycles are not checked here; callers
        run validate_folder_hierarchy first.
        """
        try:
            record = self._validate(FolderUpdateRequest, updates)
        except ValidationError as e:
            return self._invalid(e)
        return await self._update(folder_id, _update_values(record), 'update folder',
                                  EventType.FOLDER_UPDATED)

    @staticmethod
    def validate_folder_hierarchy(folders: Iterable[Dict[str, Any]], folder_id: str,
                                  new_parent_id: Optional[str]) -> bool:
        return ordering.validate_folder_hierarchy(folders, folder_id, new_parent_id)

    async def move_folder(self, folder_id: str, new_parent_id: Optional[str]) -> OperationResult:
        return await self.update_folder(folder_id, {'parent_id': new_parent_id})

    async def rename_folder(self, folder_id: str, new_name: str) -> OperationResult:
        try:
            record = self._validate(FolderUpdateRequest, {'name': new_name})
        except ValidationError as e:
            return self._invalid(e)
        return await self._update(folder_id, {'name': record.name}, 'rename folder',
                                  EventType.FOLDER_RENAMED)

    async def delete_folder(self, folder_id: str) -> OperationResult:
        """Delete the folder and its subtree; their diagrams leave all listings."""
        async def remote():
            result, changed, diagram_rows = await self.connection.run_remote(
                lambda s: FolderSqlOps.delete_folder(s, folder_id), 'delete folder'
            )
            await self.connection.mirror(FOLDERS, changed, removed_ids=result['deleted_ids'])
            await self.connection.mirror(DIAGRAMS, diagram_rows)
            return result

        async def local():
            return await self._local(
                (FOLDERS, DIAGRAMS), lambda d: FolderLocalOps.delete_folder(d, folder_id)
            )

        async with scope_locks(self.connection, FOLDER_LOCK, DIAGRAM_LOCK):
            result = await self._call('delete folder', remote, local, EventType.FOLDER_DELETED)
        if result.success:
            logger.info("[FolderRepo] Deleted %d folders and %d diagrams under %s",
                        len(result.data['deleted_ids']), len(result.data['deleted_diagram_ids']),
                        folder_id)
        return result

    # ------------------------------------------------------------------
    # Reordering
    # ------------------------------------------------------------------

    async def update_folder_order(self, folders: List[Dict[str, Any]]) -> OperationResult:
        """Apply {id, sort_order} pairs; every touched sibling scope ends dense."""
        try:
            records = [self._validate(SortOrderRequest, item) for item in folders or []]
        except ValidationError as e:
            return self._invalid(e)
        entries = [(FOLDER_SCOPE, record.id, record.sort_order) for record in records]
        return await run_reorder(self.connection, entries, 'update folder order',
                                 EventType.FOLDER_ORDER_UPDATED)

    async def update_item_order(self, items: List[Dict[str, Any]]) -> OperationResult:
        """Drag-and-drop reorder of mixed folders and diagrams."""
        try:
            records = [self._validate(ItemOrderRequest, item) for item in items or []]
        except ValidationError as e:
            return self._invalid(e)
        entries = [
            (FOLDER_SCOPE if record.type is ItemType.FOLDER else DIAGRAM_SCOPE,
             record.id, record.sort_order)
            for record in records
        ]
        return await run_reorder(self.connection, entries, 'update item order',
                                 EventType.ITEM_ORDER_UPDATED)

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    async def get_folder_stats(self, folder_id: str) -> OperationResult:
        """Direct children: subfolders and active diagrams."""
        async def remote():
            return await self.connection.run_remote(
                lambda s: FolderSqlOps.get_folder_stats(s, folder_id), 'get folder stats'
            )

        async def local():
            return await self._local(
                (FOLDERS, DIAGRAMS), lambda d: FolderLocalOps.get_folder_stats(d, folder_id), write=False
            )

        return await self._call('get folder stats', remote, local)

    async def get_folder_path(self, folder_id: str) -> OperationResult:
        async def remote():
            return await self.connection.run_remote(
                lambda s: FolderSqlOps.get_folder_path(s, folder_id), 'get folder path'
            )

        async def local():
            return await self._local(
                (FOLDERS,), lambda d: FolderLocalOps.get_folder_path(d, folder_id), write=False
            )

        return await self._call('get folder path', remote, local)
