"""
Project Repository
==================

Project CRUD, ownership and the per-project membership list.

Creating a project always creates the owner membership {role: owner,
status: accepted} in the same unit of work, on either path. Locally the
members are embedded in the project record under ``project_members``.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from models.common import EventType, MemberRole, MemberStatus
from models.domain import (
    CollaborationSession, Diagram, Folder, Profile, Project, ProjectMember, generate_uuid
)
from models.requests import MemberCreateRequest, ProjectCreateRequest, ProjectUpdateRequest
from models.responses import OperationResult
from services.persistence.base_repository import BaseRepository, find_row, strip_local_fields
from services.persistence.exceptions import (
    DuplicateError, LastOwnerError, NotFoundError, PersistenceError, ValidationError
)
from services.persistence.local_store import (
    COLLABORATION_SESSIONS, DIAGRAMS, FOLDERS, PROFILES, PROJECTS
)
from utils.timestamps import now_iso, utcnow

logger = logging.getLogger(__name__)

MEMBERS = 'project_members'

# Columns that may not be cleared by an update
_REQUIRED_FIELDS = ('name', 'settings')

# Profile fields shown next to a project owner and next to each member
OWNER_PROFILE_FIELDS = ('display_name', 'email')
MEMBER_PROFILE_FIELDS = ('display_name', 'email', 'avatar_url')


def public_project(row: Dict[str, Any]) -> Dict[str, Any]:
    """Project record without sync bookkeeping, members included."""
    project = strip_local_fields(row)
    project[MEMBERS] = [strip_local_fields(member) for member in row.get(MEMBERS, [])]
    return project


def sort_projects(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """updated_at descending, ties by id."""
    rows = sorted(rows, key=lambda row: str(row.get('id')))
    return sorted(rows, key=lambda row: str(row.get('updated_at') or ''), reverse=True)


def visible_to(row: Dict[str, Any], user_id: str) -> bool:
    """Owned by user_id, or user_id holds an accepted membership."""
    if row.get('owner_id') == user_id:
        return True
    return any(
        member.get('user_id') == user_id and member.get('status') == MemberStatus.ACCEPTED.value
        for member in row.get(MEMBERS, [])
    )


def profile_view(profile: Optional[Dict[str, Any]], fields) -> Optional[Dict[str, Any]]:
    if profile is None:
        return None
    return {field: profile.get(field) for field in fields}


def members_with_profiles(members: List[Dict[str, Any]],
                          profiles: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Members with their user profile under ``user`` (None for unknown users)."""
    return [
        dict(member, user=profile_view(profiles.get(member.get('user_id')), MEMBER_PROFILE_FIELDS))
        for member in members
    ]


def with_profiles(project: Dict[str, Any], profiles: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    """Project with the owner profile under ``owner`` and member profiles attached."""
    project = dict(project)
    project['owner'] = profile_view(profiles.get(project.get('owner_id')), OWNER_PROFILE_FIELDS)
    project[MEMBERS] = members_with_profiles(project.get(MEMBERS, []), profiles)
    return project


def without_profiles(project: Dict[str, Any]) -> Dict[str, Any]:
    """Inverse of with_profiles; profiles are joined on read and never stored."""
    project = {key: value for key, value in project.items() if key != 'owner'}
    project[MEMBERS] = [
        {key: value for key, value in member.items() if key != 'user'}
        for member in project.get(MEMBERS, [])
    ]
    return project


def user_ids_of(projects: List[Dict[str, Any]]) -> List[str]:
    ids = []
    for project in projects:
        ids.append(project.get('owner_id'))
        ids.extend(member.get('user_id') for member in project.get(MEMBERS, []))
    return ids


def _update_values(record: ProjectUpdateRequest) -> Dict[str, Any]:
    values = record.model_dump(exclude_unset=True)
    return {
        key: value for key, value in values.items()
        if not (key in _REQUIRED_FIELDS and value is None)
    }


def _check_owner_kept(members: List[Dict[str, Any]], project_id: str, user_id: str,
                      new_role: Optional[str]):
    """Raise LastOwnerError if user_id is the only owner and would stop being one."""
    target = next((m for m in members if m.get('user_id') == user_id), None)
    if target is None or target.get('role') != MemberRole.OWNER.value:
        return
    if new_role == MemberRole.OWNER.value:
        return
    owners = [m for m in members if m.get('role') == MemberRole.OWNER.value]
    if len(owners) <= 1:
        raise LastOwnerError(project_id, user_id)


# ============================================================================
# Remote (SQL) operations
# ============================================================================

class ProjectSqlOps:
    """Units of work against the remote backend."""

    @staticmethod
    def _members_by_project(session: Session, project_ids: List[str]) -> Dict[str, List[dict]]:
        grouped: Dict[str, List[dict]] = {project_id: [] for project_id in project_ids}
        if not project_ids:
            return grouped
        members = (
            session.query(ProjectMember)
            .filter(ProjectMember.project_id.in_(project_ids))
            .order_by(ProjectMember.joined_at, ProjectMember.id)
            .all()
        )
        for member in members:
            grouped[member.project_id].append(member.to_dict())
        return grouped

    @staticmethod
    def _with_members(session: Session, project: Project) -> Dict[str, Any]:
        data = project.to_dict()
        data[MEMBERS] = ProjectSqlOps._members_by_project(session, [project.id])[project.id]
        return data

    @staticmethod
    def _profiles(session: Session, user_ids) -> Dict[str, Dict[str, Any]]:
        ids = {user_id for user_id in user_ids if user_id}
        if not ids:
            return {}
        return {
            profile.id: profile.to_dict()
            for profile in session.query(Profile).filter(Profile.id.in_(ids)).all()
        }

    @staticmethod
    def _get(session: Session, project_id: str) -> Project:
        project = session.get(Project, project_id)
        if project is None:
            raise NotFoundError('project', project_id)
        return project

    @staticmethod
    def _member(session: Session, project_id: str, user_id: str) -> ProjectMember:
        member = (
            session.query(ProjectMember)
            .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
            .first()
        )
        if member is None:
            raise NotFoundError('member', user_id, f"User {user_id} is not a member of project {project_id}")
        return member

    @staticmethod
    def create_project(session: Session, record: ProjectCreateRequest) -> Dict[str, Any]:
        now = utcnow()
        project = Project(
            id=generate_uuid(),
            name=record.name,
            description=record.description,
            owner_id=record.owner_id,
            settings=record.settings,
            created_at=now,
            updated_at=now,
        )
        session.add(project)
        session.flush()

        owner = ProjectMember(
            id=generate_uuid(),
            project_id=project.id,
            user_id=record.owner_id,
            role=MemberRole.OWNER.value,
            status=MemberStatus.ACCEPTED.value,
            joined_at=now,
        )
        session.add(owner)
        session.flush()

        data = project.to_dict()
        data[MEMBERS] = [owner.to_dict()]
        return data

    @staticmethod
    def get_user_projects(session: Session, user_id: str) -> List[Dict[str, Any]]:
        member_of = select(ProjectMember.project_id).where(
            ProjectMember.user_id == user_id,
            ProjectMember.status == MemberStatus.ACCEPTED.value,
        )
        projects = (
            session.query(Project)
            .filter(or_(Project.owner_id == user_id, Project.id.in_(member_of)))
            .order_by(Project.updated_at.desc(), Project.id)
            .all()
        )
        members = ProjectSqlOps._members_by_project(session, [p.id for p in projects])
        result = []
        for project in projects:
            data = project.to_dict()
            data[MEMBERS] = members[project.id]
            result.append(data)
        profiles = ProjectSqlOps._profiles(session, user_ids_of(result))
        return [with_profiles(data, profiles) for data in result]

    @staticmethod
    def get_project(session: Session, project_id: str) -> Dict[str, Any]:
        data = ProjectSqlOps._with_members(session, ProjectSqlOps._get(session, project_id))
        return with_profiles(data, ProjectSqlOps._profiles(session, user_ids_of([data])))

    @staticmethod
    def update_project(session: Session, project_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        project = ProjectSqlOps._get(session, project_id)
        for key, value in values.items():
            setattr(project, key, value)
        project.updated_at = utcnow()
        session.flush()
        return ProjectSqlOps._with_members(session, project)

    @staticmethod
    def delete_project(session: Session, project_id: str) -> Dict[str, Any]:
        project = ProjectSqlOps._get(session, project_id)
        diagram_ids = select(Diagram.id).where(Diagram.project_id == project_id)
        session.query(CollaborationSession).filter(
            CollaborationSession.diagram_id.in_(diagram_ids)
        ).delete(synchronize_session=False)
        diagrams = session.query(Diagram).filter(Diagram.project_id == project_id).delete(
            synchronize_session=False
        )
        folders = session.query(Folder).filter(Folder.project_id == project_id).delete(
            synchronize_session=False
        )
        session.query(ProjectMember).filter(ProjectMember.project_id == project_id).delete(
            synchronize_session=False
        )
        session.delete(project)
        session.flush()
        return {'id': project_id, 'deleted_folders': folders, 'deleted_diagrams': diagrams}

    @staticmethod
    def add_project_member(session: Session, record: MemberCreateRequest) -> Dict[str, Any]:
        ProjectSqlOps._get(session, record.project_id)
        existing = (
            session.query(ProjectMember)
            .filter(ProjectMember.project_id == record.project_id,
                    ProjectMember.user_id == record.user_id)
            .first()
        )
        if existing is not None:
            raise DuplicateError(
                f"User {record.user_id} is already a member of project {record.project_id}",
                context={'project_id': record.project_id, 'user_id': record.user_id}
            )
        member = ProjectMember(
            id=generate_uuid(),
            project_id=record.project_id,
            user_id=record.user_id,
            role=record.role.value,
            status=record.status.value,
            invited_by=record.invited_by,
            joined_at=utcnow(),
        )
        session.add(member)
        session.flush()
        return member.to_dict()

    @staticmethod
    def get_project_members(session: Session, project_id: str) -> List[Dict[str, Any]]:
        ProjectSqlOps._get(session, project_id)
        members = ProjectSqlOps._members_by_project(session, [project_id])[project_id]
        profiles = ProjectSqlOps._profiles(session, [member['user_id'] for member in members])
        return members_with_profiles(members, profiles)

    @staticmethod
    def update_project_member_role(session: Session, project_id: str, user_id: str,
                                   role: str) -> Dict[str, Any]:
        member = ProjectSqlOps._member(session, project_id, user_id)
        if member.role == MemberRole.OWNER.value and role != MemberRole.OWNER.value:
            owners = session.query(func.count(ProjectMember.id)).filter(
                ProjectMember.project_id == project_id,
                ProjectMember.role == MemberRole.OWNER.value
            ).scalar()
            if owners <= 1:
                raise LastOwnerError(project_id, user_id)
        member.role = role
        session.flush()
        return member.to_dict()

    @staticmethod
    def remove_project_member(session: Session, project_id: str, user_id: str) -> Dict[str, Any]:
        member = ProjectSqlOps._member(session, project_id, user_id)
        if member.role == MemberRole.OWNER.value:
            owners = session.query(func.count(ProjectMember.id)).filter(
                ProjectMember.project_id == project_id,
                ProjectMember.role == MemberRole.OWNER.value
            ).scalar()
            if owners <= 1:
                raise LastOwnerError(project_id, user_id)
        removed = member.to_dict()
        session.delete(member)
        session.flush()
        return removed


# ============================================================================
# Local operations
# ============================================================================

class ProjectLocalOps:
    """The same operations as mutators over the local store values."""

    @staticmethod
    def profiles(data: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        return {row.get('id'): row for row in data.get(PROFILES, [])}

    @staticmethod
    def create_project(data: Dict[str, Any], record: ProjectCreateRequest) -> Dict[str, Any]:
        now = now_iso()
        project_id = generate_uuid()
        project = {
            'id': project_id,
            'name': record.name,
            'description': record.description,
            'owner_id': record.owner_id,
            'settings': record.settings,
            'created_at': now,
            'updated_at': now,
            MEMBERS: [{
                'id': generate_uuid(),
                'project_id': project_id,
                'user_id': record.owner_id,
                'role': MemberRole.OWNER.value,
                'status': MemberStatus.ACCEPTED.value,
                'invited_by': None,
                'joined_at': now,
                'pending_sync': True,
            }],
            'pending_sync': True,
        }
        data[PROJECTS].append(project)
        return public_project(project)

    @staticmethod
    def get_user_projects(data: Dict[str, Any], user_id: str) -> List[Dict[str, Any]]:
        profiles = ProjectLocalOps.profiles(data)
        rows = [
            with_profiles(public_project(row), profiles)
            for row in data[PROJECTS] if visible_to(row, user_id)
        ]
        return sort_projects(rows)

    @staticmethod
    def get_project(data: Dict[str, Any], project_id: str) -> Dict[str, Any]:
        project = public_project(find_row(data[PROJECTS], 'project', project_id))
        return with_profiles(project, ProjectLocalOps.profiles(data))

    @staticmethod
    def update_project(data: Dict[str, Any], project_id: str, values: Dict[str, Any]) -> Dict[str, Any]:
        project = find_row(data[PROJECTS], 'project', project_id)
        project.update(values)
        project['updated_at'] = now_iso()
        project['pending_sync'] = True
        return public_project(project)

    @staticmethod
    def purge_project(data: Dict[str, Any], project_id: str) -> Dict[str, Any]:
        """Remove the project with its folders, diagrams and their sessions."""
        diagram_ids = {row['id'] for row in data[DIAGRAMS] if row.get('project_id') == project_id}
        before_folders = len(data[FOLDERS])
        before_diagrams = len(data[DIAGRAMS])
        data[PROJECTS] = [row for row in data[PROJECTS] if row.get('id') != project_id]
        data[FOLDERS] = [row for row in data[FOLDERS] if row.get('project_id') != project_id]
        data[DIAGRAMS] = [row for row in data[DIAGRAMS] if row.get('project_id') != project_id]
        data[COLLABORATION_SESSIONS] = [
            row for row in data[COLLABORATION_SESSIONS] if row.get('diagram_id') not in diagram_ids
        ]
        return {
            'id': project_id,
            'deleted_folders': before_folders - len(data[FOLDERS]),
            'deleted_diagrams': before_diagrams - len(data[DIAGRAMS]),
        }

    @staticmethod
    def delete_project(data: Dict[str, Any], project_id: str) -> Dict[str, Any]:
        find_row(data[PROJECTS], 'project', project_id)
        return ProjectLocalOps.purge_project(data, project_id)

    @staticmethod
    def store_member(data: Dict[str, Any], member: Dict[str, Any], pending: bool) -> None:
        """Mirror a remote member into its project record, when that record is local."""
        project = next((row for row in data[PROJECTS] if row.get('id') == member['project_id']), None)
        if project is None:
            return
        members = [m for m in project.get(MEMBERS, []) if m.get('user_id') != member['user_id']]
        members.append(dict(member, pending_sync=pending))
        project[MEMBERS] = members

    @staticmethod
    def drop_member(data: Dict[str, Any], project_id: str, user_id: str) -> None:
        project = next((row for row in data[PROJECTS] if row.get('id') == project_id), None)
        if project is not None:
            project[MEMBERS] = [m for m in project.get(MEMBERS, []) if m.get('user_id') != user_id]

    @staticmethod
    def add_project_member(data: Dict[str, Any], record: MemberCreateRequest) -> Dict[str, Any]:
        project = find_row(data[PROJECTS], 'project', record.project_id)
        if any(m.get('user_id') == record.user_id for m in project.get(MEMBERS, [])):
            raise DuplicateError(
                f"User {record.user_id} is already a member of project {record.project_id}",
                context={'project_id': record.project_id, 'user_id': record.user_id}
            )
        member = {
            'id': generate_uuid(),
            'project_id': record.project_id,
            'user_id': record.user_id,
            'role': record.role.value,
            'status': record.status.value,
            'invited_by': record.invited_by,
            'joined_at': now_iso(),
            'pending_sync': True,
        }
        project.setdefault(MEMBERS, []).append(member)
        project['pending_sync'] = True
        return strip_local_fields(member)

    @staticmethod
    def get_project_members(data: Dict[str, Any], project_id: str) -> List[Dict[str, Any]]:
        project = find_row(data[PROJECTS], 'project', project_id)
        members = [strip_local_fields(member) for member in project.get(MEMBERS, [])]
        return members_with_profiles(members, ProjectLocalOps.profiles(data))

    @staticmethod
    def _member(project: Dict[str, Any], user_id: str) -> Dict[str, Any]:
        for member in project.get(MEMBERS, []):
            if member.get('user_id') == user_id:
                return member
        raise NotFoundError('member', user_id,
                            f"User {user_id} is not a member of project {project['id']}")

    @staticmethod
    def update_project_member_role(data: Dict[str, Any], project_id: str, user_id: str,
                                   role: str) -> Dict[str, Any]:
        project = find_row(data[PROJECTS], 'project', project_id)
        member = ProjectLocalOps._member(project, user_id)
        _check_owner_kept(project.get(MEMBERS, []), project_id, user_id, role)
        member['role'] = role
        member['pending_sync'] = True
        project['pending_sync'] = True
        return strip_local_fields(member)

    @staticmethod
    def remove_project_member(data: Dict[str, Any], project_id: str, user_id: str) -> Dict[str, Any]:
        project = find_row(data[PROJECTS], 'project', project_id)
        member = ProjectLocalOps._member(project, user_id)
        _check_owner_kept(project.get(MEMBERS, []), project_id, user_id, None)
        project[MEMBERS] = [m for m in project[MEMBERS] if m.get('user_id') != user_id]
        project['pending_sync'] = True
        return strip_local_fields(member)


# ============================================================================
# Repository
# ============================================================================

class ProjectRepository(BaseRepository):
    """Projects and memberships with remote-then-local fallback."""

    component = 'ProjectRepo'

    async def _mirror_members(self, member: Optional[Dict[str, Any]] = None,
                              dropped: Optional[Dict[str, Any]] = None):
        def apply(data):
            if member is not None:
                ProjectLocalOps.store_member(data, member, pending=False)
            if dropped is not None:
                ProjectLocalOps.drop_member(data, dropped['project_id'], dropped['user_id'])
        try:
            await self._local((PROJECTS,), apply)
        except PersistenceError as e:
            logger.warning("[ProjectRepo] Could not mirror membership locally: %s", e)

    async def _local_profiles(self) -> Dict[str, Dict[str, Any]]:
        try:
            return ProjectLocalOps.profiles({PROFILES: await self.store.read(PROFILES)})
        except PersistenceError as e:
            logger.warning("[ProjectRepo] Could not read local profiles: %s", e)
            return {}

    async def _read_projects(self, work, description: str):
        """Remote read mirrored without the joined profiles."""
        data = await self.connection.run_remote(work, description)
        rows = data if isinstance(data, list) else [data]
        await self.connection.mirror(
            PROJECTS, [without_profiles(row) for row in rows], overwrite_pending=False
        )
        return data

    async def _fill_profiles(self, projects: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Join profiles onto rows taken from the local overlay."""
        if all('owner' in project for project in projects):
            return projects
        profiles = await self._local_profiles()
        return [
            project if 'owner' in project else with_profiles(project, profiles)
            for project in projects
        ]

    async def create_project(self, data: Dict[str, Any]) -> OperationResult:
        """Insert the project and the creator's owner membership."""
        try:
            record = self._validate(ProjectCreateRequest, data)
        except ValidationError as e:
            return self._invalid(e)

        async def remote():
            return await self._remote(
                lambda s: ProjectSqlOps.create_project(s, record), 'create project',
                mirror_key=PROJECTS
            )

        async def local():
            return await self._local((PROJECTS,), lambda d: ProjectLocalOps.create_project(d, record))

        result = await self._call('create project', remote, local, EventType.PROJECT_CREATED)
        if result.success:
            logger.info("[ProjectRepo] Project created: %s (%s)", result.data['id'], result.source.value)
        return result

    async def get_user_projects(self, user_id: str) -> OperationResult:
        """Projects owned by user_id or shared with an accepted membership."""
        if not user_id:
            return self._invalid(ValidationError("user_id is required"))

        async def remote():
            rows = await self._read_projects(
                lambda s: ProjectSqlOps.get_user_projects(s, user_id), 'get user projects'
            )
            merged = await self._overlay(rows, PROJECTS, lambda row: True,
                                         visible=lambda row: visible_to(row, user_id), order=None)
            return sort_projects(await self._fill_profiles([public_project(row) for row in merged]))

        async def local():
            return await self._local(
                (PROJECTS, PROFILES), lambda d: ProjectLocalOps.get_user_projects(d, user_id),
                write=False
            )

        return await self._call('get user projects', remote, local, EventType.USER_PROJECTS_LOADED,
                                delta={'user_id': user_id})

    async def get_project(self, project_id: str) -> OperationResult:
        async def remote():
            row = await self._read_projects(
                lambda s: ProjectSqlOps.get_project(s, project_id), 'get project'
            )
            project = public_project(await self._overlay_one(row, PROJECTS))
            return (await self._fill_profiles([project]))[0]

        async def local():
            return await self._local(
                (PROJECTS, PROFILES), lambda d: ProjectLocalOps.get_project(d, project_id), write=False
            )

        return await self._call('get project', remote, local, EventType.PROJECT_FETCHED)

    async def update_project(self, project_id: str, updates: Dict[str, Any]) -> OperationResult:
        try:
            record = self._validate(ProjectUpdateRequest, updates)
        except ValidationError as e:
            return self._invalid(e)
        values = _update_values(record)

        async def remote():
            return await self._remote(
                lambda s: ProjectSqlOps.update_project(s, project_id, values), 'update project',
                mirror_key=PROJECTS
            )

        async def local():
            return await self._local(
                (PROJECTS,), lambda d: ProjectLocalOps.update_project(d, project_id, values)
            )

        return await self._call('update project', remote, local, EventType.PROJECT_UPDATED,
                                delta=values)

    async def delete_project(self, project_id: str) -> OperationResult:
        """Delete the project with its memberships, folders and diagrams."""
        keys = (PROJECTS, FOLDERS, DIAGRAMS, COLLABORATION_SESSIONS)

        async def remote():
            result = await self._remote(
                lambda s: ProjectSqlOps.delete_project(s, project_id), 'delete project'
            )
            try:
                await self._local(keys, lambda d: ProjectLocalOps.purge_project(d, project_id))
            except PersistenceError as e:
                logger.warning("[ProjectRepo] Could not purge local copy of %s: %s", project_id, e)
            return result

        async def local():
            return await self._local(keys, lambda d: ProjectLocalOps.delete_project(d, project_id))

        return await self._call('delete project', remote, local, EventType.PROJECT_DELETED)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    async def add_project_member(self, data: Dict[str, Any]) -> OperationResult:
        try:
            record = self._validate(MemberCreateRequest, data)
        except ValidationError as e:
            return self._invalid(e)

        async def remote():
            member = await self.connection.run_remote(
                lambda s: ProjectSqlOps.add_project_member(s, record), 'add project member'
            )
            await self._mirror_members(member=member)
            return member

        async def local():
            return await self._local((PROJECTS,), lambda d: ProjectLocalOps.add_project_member(d, record))

        return await self._call('add project member', remote, local, EventType.PROJECT_MEMBER_ADDED)

    async def get_project_members(self, project_id: str) -> OperationResult:
        async def remote():
            members = await self.connection.run_remote(
                lambda s: ProjectSqlOps.get_project_members(s, project_id), 'get project members'
            )
            projects = await self.store.read(PROJECTS)
            project = next((row for row in projects if row.get('id') == project_id), None)
            pending = [m for m in (project or {}).get(MEMBERS, []) if m.get('pending_sync')]
            if not pending:
                return members
            merged = {m['user_id']: m for m in members}
            profiles = await self._local_profiles()
            for member in members_with_profiles([strip_local_fields(m) for m in pending], profiles):
                merged[member['user_id']] = member
            return sorted(merged.values(), key=lambda m: (str(m.get('joined_at') or ''), m['user_id']))

        async def local():
            return await self._local(
                (PROJECTS, PROFILES), lambda d: ProjectLocalOps.get_project_members(d, project_id),
                write=False
            )

        return await self._call('get project members', remote, local)

    async def update_project_member_role(self, project_id: str, user_id: str,
                                         role: str) -> OperationResult:
        """Change a member's role; the last owner cannot be demoted."""
        try:
            new_role = MemberRole(role).value
        except ValueError:
            return self._invalid(ValidationError(
                f"Invalid role '{role}'", context={'allowed': [r.value for r in MemberRole]}
            ))

        async def remote():
            member = await self.connection.run_remote(
                lambda s: ProjectSqlOps.update_project_member_role(s, project_id, user_id, new_role),
                'update member role'
            )
            await self._mirror_members(member=member)
            return member

        async def local():
            return await self._local(
                (PROJECTS,),
                lambda d: ProjectLocalOps.update_project_member_role(d, project_id, user_id, new_role)
            )

        return await self._call('update member role', remote, local,
                                EventType.PROJECT_MEMBER_ROLE_UPDATED, delta={'role': new_role})

    async def remove_project_member(self, project_id: str, user_id: str) -> OperationResult:
        """Remove a member; the last owner cannot be removed."""
        async def remote():
            member = await self.connection.run_remote(
                lambda s: ProjectSqlOps.remove_project_member(s, project_id, user_id),
                'remove project member'
            )
            await self._mirror_members(dropped=member)
            return member

        async def local():
            return await self._local(
                (PROJECTS,), lambda d: ProjectLocalOps.remove_project_member(d, project_id, user_id)
            )

        return await self._call('remove project member', remote, local,
                                EventType.PROJECT_MEMBER_REMOVED)
