"""
Database Manager
================

Single entry point of the persistence layer. Composes the project, folder
and diagram repositories over one connection manager, one local store and
one event bus, re-exposes their operations, and adds the aggregate views
(project data load, content search, export).

Consumers subscribe to ``manager.events`` once; every repository publishes
on that bus.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from config.database import close_db
from config.settings import Config
from models.common import EventType, RecordSource
from models.responses import OperationResult
from services.persistence.connection_manager import ConnectionManager
from services.persistence.diagram_repository import DiagramRepository
from services.persistence.events import EventBus
from services.persistence.exceptions import ValidationError
from services.persistence.folder_repository import FolderRepository
from services.persistence.local_store import LocalStore
from services.persistence.project_repository import ProjectRepository
from utils.timestamps import now_iso

logger = logging.getLogger(__name__)

EXPORT_FORMAT_VERSION = "1.0"


class DatabaseManager:
    """
    Façade over the connection manager and the three repositories.

    Every public coroutine returns an OperationResult; nothing raises across
    this boundary.
    """

    def __init__(self, connection: Optional[ConnectionManager] = None, *,
                 session_factory: Optional[Callable[[], Session]] = None,
                 local_store: Optional[LocalStore] = None,
                 event_bus: Optional[EventBus] = None,
                 config: Optional[Config] = None,
                 force_local: Optional[bool] = None,
                 engine: Optional[Engine] = None):
        """
        Initialize the manager.

        Args:
            connection: Ready connection manager; the remaining arguments build
                one when omitted
            session_factory: SQLAlchemy session factory of the remote backend,
                None for local-only operation
            local_store: Local fallback store
            event_bus: Bus all repositories publish on
            config: Persistence configuration
            force_local: Initial mode preference (overrides config)
            engine: Engine behind session_factory, disposed on close
        """
        self.connection = connection or ConnectionManager(
            session_factory=session_factory,
            local_store=local_store,
            event_bus=event_bus,
            config=config,
            force_local=force_local,
        )
        self.engine = engine
        self.events = self.connection.events
        self.local_store = self.connection.local_store
        self.projects = ProjectRepository(self.connection)
        self.folders = FolderRepository(self.connection)
        self.diagrams = DiagramRepository(self.connection)

    async def initialize(self) -> Dict[str, Any]:
        status = await self.connection.initialize()
        logger.info("[DatabaseManager] Initialized in %s mode", status['mode'])
        return status

    async def close(self):
        await self.connection.close()
        if self.engine is not None:
            close_db(self.engine)

    def subscribe(self, event_type, handler) -> Callable[[], None]:
        return self.events.subscribe(event_type, handler)

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def test_connection(self) -> Dict[str, Any]:
        return await self.connection.test_connection()

    async def retry_connection(self) -> Dict[str, Any]:
        return await self.connection.retry_connection()

    async def enable_local_mode(self) -> OperationResult:
        return await self.connection.enable_local_mode()

    async def enable_database_mode(self) -> OperationResult:
        return await self.connection.enable_database_mode()

    def get_connection_status(self) -> Dict[str, Any]:
        return self.connection.get_connection_status()

    async def get_debug_info(self) -> Dict[str, Any]:
        return await self.connection.get_debug_info()

    async def check_table_exists(self, table: str) -> bool:
        return await self.connection.check_table_exists(table)

    async def clear_local_data(self) -> OperationResult:
        return await self.connection.clear_local_data()

    async def upsert_profile(self, profile: Dict[str, Any]) -> OperationResult:
        return await self.connection.upsert_profile(profile)

    async def get_full_status(self) -> Dict[str, Any]:
        """Connection status, local store counts and subscriber count."""
        debug = await self.connection.get_debug_info()
        return {
            'connection': debug['status'],
            'local_counts': debug['local_counts'],
            'config': debug['config'],
            'event_handlers': self.events.handler_count(),
            'timestamp': now_iso(),
        }

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(self, data: Dict[str, Any]) -> OperationResult:
        return await self.projects.create_project(data)

    async def get_user_projects(self, user_id: str) -> OperationResult:
        return await self.projects.get_user_projects(user_id)

    async def get_project(self, project_id: str) -> OperationResult:
        return await self.projects.get_project(project_id)

    async def update_project(self, project_id: str, updates: Dict[str, Any]) -> OperationResult:
        return await self.projects.update_project(project_id, updates)

    async def delete_project(self, project_id: str) -> OperationResult:
        return await self.projects.delete_project(project_id)

    async def add_project_member(self, data: Dict[str, Any]) -> OperationResult:
        return await self.projects.add_project_member(data)

    async def get_project_members(self, project_id: str) -> OperationResult:
        return await self.projects.get_project_members(project_id)

    async def update_project_member_role(self, project_id: str, user_id: str,
                                         role: str) -> OperationResult:
        return await self.projects.update_project_member_role(project_id, user_id, role)

    async def remove_project_member(self, project_id: str, user_id: str) -> OperationResult:
        return await self.projects.remove_project_member(project_id, user_id)

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    async def create_folder(self, data: Dict[str, Any]) -> OperationResult:
        return await self.folders.create_folder(data)

    async def get_project_folders(self, project_id: str) -> OperationResult:
        return await self.folders.get_project_folders(project_id)

    async def get_folder(self, folder_id: str) -> OperationResult:
        return await self.folders.get_folder(folder_id)

    async def update_folder(self, folder_id: str, updates: Dict[str, Any]) -> OperationResult:
        return await self.folders.update_folder(folder_id, updates)

    def validate_folder_hierarchy(self, folders: List[Dict[str, Any]], folder_id: str,
                                  new_parent_id: Optional[str]) -> bool:
        return self.folders.validate_folder_hierarchy(folders, folder_id, new_parent_id)

    async def move_folder(self, folder_id: str, new_parent_id: Optional[str]) -> OperationResult:
        return await self.folders.move_folder(folder_id, new_parent_id)

    async def delete_folder(self, folder_id: str) -> OperationResult:
        return await self.folders.delete_folder(folder_id)

    async def rename_folder(self, folder_id: str, new_name: str) -> OperationResult:
        return await self.folders.rename_folder(folder_id, new_name)

    async def update_folder_order(self, folders: List[Dict[str, Any]]) -> OperationResult:
        return await self.folders.update_folder_order(folders)

    async def update_item_order(self, items: List[Dict[str, Any]]) -> OperationResult:
        return await self.folders.update_item_order(items)

    async def get_folder_stats(self, folder_id: str) -> OperationResult:
        return await self.folders.get_folder_stats(folder_id)

    async def get_folder_path(self, folder_id: str) -> OperationResult:
        return await self.folders.get_folder_path(folder_id)

    # ------------------------------------------------------------------
    # Diagrams
    # ------------------------------------------------------------------

    async def create_diagram(self, data: Dict[str, Any]) -> OperationResult:
        return await self.diagrams.create_diagram(data)

    async def update_diagram(self, diagram_id: str, updates: Dict[str, Any]) -> OperationResult:
        return await self.diagrams.update_diagram(diagram_id, updates)

    async def copy_diagram(self, diagram_id: str, new_name: Optional[str] = None) -> OperationResult:
        return await self.diagrams.copy_diagram(diagram_id, new_name)

    async def get_project_diagrams(self, project_id: str) -> OperationResult:
        return await self.diagrams.get_project_diagrams(project_id)

    async def get_diagram(self, diagram_id: str) -> OperationResult:
        return await self.diagrams.get_diagram(diagram_id)

    async def delete_diagram(self, diagram_id: str) -> OperationResult:
        return await self.diagrams.delete_diagram(diagram_id)

    async def update_diagram_order(self, diagrams: List[Dict[str, Any]]) -> OperationResult:
        return await self.diagrams.update_diagram_order(diagrams)

    async def upsert_collaboration_session(self, data: Dict[str, Any]) -> OperationResult:
        return await self.diagrams.upsert_collaboration_session(data)

    async def get_active_collaboration_sessions(self, diagram_id: str) -> OperationResult:
        return await self.diagrams.get_active_collaboration_sessions(diagram_id)

    async def end_collaboration_session(self, diagram_id: str, user_id: str) -> OperationResult:
        return await self.diagrams.end_collaboration_session(diagram_id, user_id)

    async def create_activity_log(self, entry: Dict[str, Any]) -> OperationResult:
        return await self.diagrams.create_activity_log(entry)

    async def get_activity_logs(self, project_id: str, limit: int = 50) -> OperationResult:
        return await self.diagrams.get_activity_logs(project_id, limit)

    # ------------------------------------------------------------------
    # Aggregates
    # ------------------------------------------------------------------

    async def get_project_data(self, project_id: str) -> OperationResult:
        """
        Folders and diagrams of a project, fetched concurrently.

        Never fails as a whole: a side that could not be loaded comes back
        empty, with an entry {type, error} in errors.
        """
        folders, diagrams = await asyncio.gather(
            self.folders.get_project_folders(project_id),
            self.diagrams.get_project_diagrams(project_id),
        )
        errors = [
            {'type': name, 'error': result.error.model_dump()}
            for name, result in (('folders', folders), ('diagrams', diagrams))
            if not result.success
        ]

        source = (
            RecordSource.REMOTE
            if folders.source is RecordSource.REMOTE and diagrams.source is RecordSource.REMOTE
            else RecordSource.LOCAL
        )
        data = {
            'folders': folders.data if folders.success else [],
            'diagrams': diagrams.data if diagrams.success else [],
            'errors': errors,
        }
        if errors:
            logger.warning("[DatabaseManager] Project %s loaded partially: %s", project_id,
                           ", ".join(f"{entry['type']} ({entry['error']['error_code']})"
                                     for entry in errors))
        self.events.emit(EventType.PROJECT_DATA_LOADED, data, delta={'project_id': project_id},
                         source=source)
        return OperationResult.ok(data, source)

    async def search_project_content(self, project_id: str, term: str) -> OperationResult:
        """
        Case-insensitive substring search over folder names and diagram
        names and descriptions. Each hit is {type, id, name, match}.
        """
        needle = (term or '').strip().lower()
        if not needle:
            return OperationResult.fail(ValidationError("Search term is required").to_dict())

        loaded = await self.get_project_data(project_id)
        if not loaded.success:
            return loaded

        hits = []
        for folder in loaded.data['folders']:
            if needle in (folder.get('name') or '').lower():
                hits.append({'type': 'folder', 'id': folder['id'], 'name': folder.get('name'),
                             'match': 'name'})
        for diagram in loaded.data['diagrams']:
            if needle in (diagram.get('name') or '').lower():
                match = 'name'
            elif needle in (diagram.get('description') or '').lower():
                match = 'description'
            else:
                continue
            hits.append({'type': 'diagram', 'id': diagram['id'], 'name': diagram.get('name'),
                         'match': match})

        self.events.emit(EventType.PROJECT_CONTENT_SEARCHED, hits,
                         delta={'project_id': project_id, 'term': term, 'count': len(hits)},
                         source=loaded.source)
        return OperationResult.ok(hits, loaded.source)

    async def export_project(self, project_id: str) -> OperationResult:
        """JSON-serialisable snapshot {project, folders, diagrams, exported_at, version}."""
        project = await self.projects.get_project(project_id)
        if not project.success:
            return project
        loaded = await self.get_project_data(project_id)
        if not loaded.success:
            return loaded

        snapshot = {
            'project': project.data,
            'folders': loaded.data['folders'],
            'diagrams': loaded.data['diagrams'],
            'exported_at': now_iso(),
            'version': EXPORT_FORMAT_VERSION,
        }
        logger.info("[DatabaseManager] Exported project %s: %d folders, %d diagrams", project_id,
                    len(snapshot['folders']), len(snapshot['diagrams']))
        self.events.emit(EventType.PROJECT_EXPORTED, {'project_id': project_id,
                                                      'exported_at': snapshot['exported_at']},
                         source=loaded.source)
        return OperationResult.ok(snapshot, loaded.source)

    async def export_project_json(self, project_id: str) -> OperationResult:
        exported = await self.export_project(project_id)
        if not exported.success:
            return exported
        return OperationResult.ok(json.dumps(exported.data, ensure_ascii=False, indent=2),
                                  exported.source)
