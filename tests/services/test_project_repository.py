"""
Project Repository Tests
========================

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import asyncio
import time
from unittest.mock import patch

import pytest

from models.common import EventType, RecordSource
from models.domain import Project
from services.persistence.database_manager import DatabaseManager
from services.persistence.local_store import DIAGRAMS, FOLDERS, PROJECTS
from services.persistence.project_repository import ProjectSqlOps


async def _project(manager, name='Claims', owner='u1'):
    result = await manager.create_project({'name': name, 'owner_id': owner})
    assert result.success, result.error
    return result.data


class TestProjectCrud:
    """Test project create, read, update and delete on the remote path."""

    @pytest.mark.asyncio
    async def test_create_adds_owner_membership(self, manager, recorder):
        project = await _project(manager)

        assert project['owner_id'] == 'u1'
        assert [(m['user_id'], m['role'], m['status']) for m in project['project_members']] == [
            ('u1', 'owner', 'accepted')
        ]
        assert recorder.of(EventType.PROJECT_CREATED)[0].source is RecordSource.REMOTE

        members = await manager.get_project_members(project['id'])
        assert [m['user_id'] for m in members.data] == ['u1']

    @pytest.mark.asyncio
    async def test_create_rejects_missing_name(self, manager, recorder):
        result = await manager.create_project({'owner_id': 'u1'})
        assert not result.success
        assert result.error.error_code == 'INVALID_INPUT'
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_get_user_projects_is_idempotent_and_sorted(self, manager):
        first = await _project(manager, 'First')
        second = await _project(manager, 'Second')
        await manager.update_project(first['id'], {'description': 'touched'})

        listed = await manager.get_user_projects('u1')
        again = await manager.get_user_projects('u1')

        assert [p['id'] for p in listed.data] == [first['id'], second['id']]
        assert [p['id'] for p in again.data] == [p['id'] for p in listed.data]

    @pytest.mark.asyncio
    async def test_update_keeps_required_fields(self, manager, recorder):
        project = await _project(manager)
        result = await manager.update_project(project['id'], {'name': None, 'description': 'Motor'})
        assert result.data['name'] == 'Claims'
        assert result.data['description'] == 'Motor'
        assert recorder.of(EventType.PROJECT_UPDATED)[0].delta == {'description': 'Motor'}

    @pytest.mark.asyncio
    async def test_update_rejects_owner_change(self, manager):
        project = await _project(manager)
        result = await manager.update_project(project['id'], {'owner_id': 'u2'})
        assert result.error.error_code == 'INVALID_INPUT'

    @pytest.mark.asyncio
    async def test_get_missing_project(self, manager):
        result = await manager.get_project('nope')
        assert not result.success
        assert result.error.error_code == 'PROJECT_NOT_FOUND'

    @pytest.mark.asyncio
    async def test_delete_cascades(self, manager, store):
        project = await _project(manager)
        folder = (await manager.create_folder({'project_id': project['id'], 'name': 'F'})).data
        await manager.create_diagram({'project_id': project['id'], 'folder_id': folder['id'],
                                      'name': 'D'})

        result = await manager.delete_project(project['id'])

        assert result.data == {'id': project['id'], 'deleted_folders': 1, 'deleted_diagrams': 1}
        assert (await manager.get_project(project['id'])).error.error_code == 'PROJECT_NOT_FOUND'
        assert (await manager.get_project_folders(project['id'])).data == []
        assert await store.read(PROJECTS) == []
        assert await store.read(FOLDERS) == []
        assert await store.read(DIAGRAMS) == []


class TestMembership:
    """Test member visibility, duplicates and the last-owner rule."""

    @pytest.mark.asyncio
    async def test_pending_member_cannot_see_project(self, manager):
        project = await _project(manager)
        await manager.add_project_member({'project_id': project['id'], 'user_id': 'u2'})
        assert (await manager.get_user_projects('u2')).data == []

    @pytest.mark.asyncio
    async def test_accepted_member_sees_project(self, manager):
        project = await _project(manager)
        await manager.add_project_member({'project_id': project['id'], 'user_id': 'u2',
                                          'role': 'editor', 'status': 'accepted'})
        listed = await manager.get_user_projects('u2')
        assert [p['id'] for p in listed.data] == [project['id']]

    @pytest.mark.asyncio
    async def test_duplicate_member_does_not_fall_back(self, manager, store):
        project = await _project(manager)
        await manager.add_project_member({'project_id': project['id'], 'user_id': 'u2'})

        result = await manager.add_project_member({'project_id': project['id'], 'user_id': 'u2'})

        assert result.error.error_code == 'DUPLICATE'
        assert result.source is RecordSource.REMOTE
        local = (await store.read(PROJECTS))[0]
        assert [m['user_id'] for m in local['project_members']].count('u2') == 1

    @pytest.mark.asyncio
    async def test_last_owner_cannot_be_demoted_or_removed(self, manager):
        project = await _project(manager)

        demoted = await manager.update_project_member_role(project['id'], 'u1', 'editor')
        removed = await manager.remove_project_member(project['id'], 'u1')

        assert demoted.error.error_code == 'LAST_OWNER'
        assert removed.error.error_code == 'LAST_OWNER'

    @pytest.mark.asyncio
    async def test_second_owner_allows_demotion(self, manager):
        project = await _project(manager)
        await manager.add_project_member({'project_id': project['id'], 'user_id': 'u2',
                                          'role': 'owner', 'status': 'accepted'})

        result = await manager.update_project_member_role(project['id'], 'u1', 'admin')

        assert result.success
        assert result.data['role'] == 'admin'

    @pytest.mark.asyncio
    async def test_invalid_role(self, manager):
        project = await _project(manager)
        result = await manager.update_project_member_role(project['id'], 'u1', 'superuser')
        assert result.error.error_code == 'VALIDATION'

    @pytest.mark.asyncio
    async def test_remove_member(self, manager, recorder):
        project = await _project(manager)
        await manager.add_project_member({'project_id': project['id'], 'user_id': 'u2'})
        result = await manager.remove_project_member(project['id'], 'u2')
        assert result.data['user_id'] == 'u2'
        members = await manager.get_project_members(project['id'])
        assert [m['user_id'] for m in members.data] == ['u1']
        assert EventType.PROJECT_MEMBER_REMOVED.value in recorder.types()


class TestLocalFallback:
    """Test the same operations against the local store."""

    @pytest.mark.asyncio
    async def test_fallback_create_is_pending(self, fallback_manager, store):
        project = await _project(fallback_manager)
        rows = await store.read(PROJECTS)
        assert rows[0]['id'] == project['id']
        assert rows[0]['pending_sync'] is True
        assert rows[0]['project_members'][0]['role'] == 'owner'

    @pytest.mark.asyncio
    async def test_timed_out_remote_create_lands_only_locally(self, session_factory, store, make_config):
        manager = DatabaseManager(session_factory=session_factory, local_store=store,
                                  config=make_config(REMOTE_TIMEOUT_SECONDS=0.2))
        original = ProjectSqlOps.create_project

        def slow_create(session, record):
            data = original(session, record)
            time.sleep(0.6)
            return data

        with patch.object(ProjectSqlOps, 'create_project', staticmethod(slow_create)):
            created = await manager.create_project({'name': 'Alpha', 'owner_id': 'u1'})
            # Let the abandoned worker thread finish
            await asyncio.sleep(1)

        assert created.source is RecordSource.LOCAL
        session = session_factory()
        try:
            assert session.query(Project).count() == 0
        finally:
            session.close()
        listed = await manager.get_user_projects('u1')
        assert [row['name'] for row in listed.data] == ['Alpha']

    @pytest.mark.asyncio
    async def test_local_visibility_and_last_owner(self, local_manager):
        project = await _project(local_manager)
        await local_manager.add_project_member({'project_id': project['id'], 'user_id': 'u2'})

        assert (await local_manager.get_user_projects('u2')).data == []
        duplicate = await local_manager.add_project_member(
            {'project_id': project['id'], 'user_id': 'u2'}
        )
        assert duplicate.error.error_code == 'DUPLICATE'
        removed = await local_manager.remove_project_member(project['id'], 'u1')
        assert removed.error.error_code == 'LAST_OWNER'

    @pytest.mark.asyncio
    async def test_remote_read_overlays_pending_rows(self, manager, store):
        remote_project = await _project(manager, 'Remote')
        await manager.enable_local_mode()
        local_project = await _project(manager, 'Offline')
        await manager.enable_database_mode()

        listed = await manager.get_user_projects('u1')

        assert listed.source is RecordSource.REMOTE
        assert {p['id'] for p in listed.data} == {remote_project['id'], local_project['id']}

    @pytest.mark.asyncio
    async def test_local_delete_cascades(self, local_manager, store):
        project = await _project(local_manager)
        folder = (await local_manager.create_folder({'project_id': project['id'], 'name': 'F'})).data
        await local_manager.create_diagram({'project_id': project['id'], 'folder_id': folder['id'],
                                            'name': 'D'})

        result = await local_manager.delete_project(project['id'])

        assert result.source is RecordSource.LOCAL
        assert result.data['deleted_folders'] == 1
        assert result.data['deleted_diagrams'] == 1
        assert await store.read(DIAGRAMS) == []


@pytest.fixture(params=['remote', 'local'])
def any_manager(request, manager, local_manager):
    """The same scenario against the remote backend and the local store."""
    return manager if request.param == 'remote' else local_manager


class TestProfiles:
    """Test the profile fields joined onto owners and members."""

    ADA = {'id': 'u1', 'email': 'ada@example.com', 'display_name': 'Ada',
           'avatar_url': 'https://cdn.example.com/ada.png'}

    @pytest.mark.asyncio
    async def test_members_carry_user_profile(self, any_manager):
        await any_manager.upsert_profile(self.ADA)
        project = await _project(any_manager)
        await any_manager.add_project_member({'project_id': project['id'], 'user_id': 'u2'})

        members = await any_manager.get_project_members(project['id'])

        assert {m['user_id']: m['user'] for m in members.data} == {
            'u1': {'display_name': 'Ada', 'email': 'ada@example.com',
                   'avatar_url': 'https://cdn.example.com/ada.png'},
            'u2': None,
        }

    @pytest.mark.asyncio
    async def test_projects_carry_owner_profile(self, any_manager):
        await any_manager.upsert_profile(self.ADA)
        project = await _project(any_manager)

        listed = await any_manager.get_user_projects('u1')
        fetched = await any_manager.get_project(project['id'])

        assert listed.data[0]['owner'] == {'display_name': 'Ada', 'email': 'ada@example.com'}
        assert fetched.data['owner'] == {'display_name': 'Ada', 'email': 'ada@example.com'}
        assert fetched.data['project_members'][0]['user']['display_name'] == 'Ada'

    @pytest.mark.asyncio
    async def test_owner_without_profile(self, any_manager):
        await _project(any_manager, owner='u9')
        listed = await any_manager.get_user_projects('u9')
        assert listed.data[0]['owner'] is None

    @pytest.mark.asyncio
    async def test_profiles_are_not_stored_with_projects(self, manager, store):
        await manager.upsert_profile(self.ADA)
        project = await _project(manager)
        await manager.get_user_projects('u1')
        await manager.get_project(project['id'])

        row = (await store.read(PROJECTS))[0]

        assert 'owner' not in row
        assert all('user' not in member for member in row['project_members'])

    @pytest.mark.asyncio
    async def test_pending_rows_get_local_profiles(self, manager):
        await manager.upsert_profile(self.ADA)
        await manager.enable_local_mode()
        offline = await _project(manager, 'Offline')
        await manager.enable_database_mode()

        listed = await manager.get_user_projects('u1')

        assert listed.source is RecordSource.REMOTE
        row = next(p for p in listed.data if p['id'] == offline['id'])
        assert row['owner'] == {'display_name': 'Ada', 'email': 'ada@example.com'}
