"""
Database Manager Tests
======================

Tests for the façade: aggregate views, status, event forwarding and the
factory that assembles a manager from configuration.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import json
from unittest.mock import AsyncMock, patch

import pytest

from models.common import EventType, RecordSource
from models.responses import OperationResult
from services.persistence import build_database_manager
from services.persistence.database_manager import DatabaseManager
from services.persistence.events import ALL_EVENTS
from services.persistence.exceptions import ConnectivityError
from services.persistence.factory import build_local_store
from services.persistence.local_store import LocalStoreError
from services.redis.redis_client import RedisStartupError


async def _seed(manager):
    project = (await manager.create_project({'name': 'Claims', 'owner_id': 'u1'})).data
    folder = (await manager.create_folder({'project_id': project['id'], 'name': 'Motor claims'})).data
    await manager.create_diagram({'project_id': project['id'], 'folder_id': folder['id'],
                                  'name': 'Intake', 'description': 'First notice of loss'})
    await manager.create_diagram({'project_id': project['id'], 'name': 'Payout',
                                  'description': 'Settle the claim'})
    return project, folder


class TestProjectData:
    """Test the combined folder and diagram load."""

    @pytest.mark.asyncio
    async def test_loads_both_sides(self, manager, recorder):
        project, folder = await _seed(manager)

        result = await manager.get_project_data(project['id'])

        assert result.source is RecordSource.REMOTE
        assert [row['id'] for row in result.data['folders']] == [folder['id']]
        assert [row['name'] for row in result.data['diagrams']] == ['Intake', 'Payout']
        assert result.data['errors'] == []
        assert recorder.of(EventType.PROJECT_DATA_LOADED)[0].delta == {'project_id': project['id']}

    @pytest.mark.asyncio
    async def test_fallback_source_is_local(self, fallback_manager):
        project, _ = await _seed(fallback_manager)
        result = await fallback_manager.get_project_data(project['id'])
        assert result.source is RecordSource.LOCAL
        assert len(result.data['diagrams']) == 2

    @pytest.mark.asyncio
    async def test_one_side_failing_is_partial(self, manager):
        failed = OperationResult.fail(ConnectivityError("down").to_dict(), RecordSource.LOCAL)
        with patch.object(manager.diagrams, 'get_project_diagrams', AsyncMock(return_value=failed)):
            result = await manager.get_project_data('p1')

        assert result.success
        assert result.data['diagrams'] == []
        assert [(entry['type'], entry['error']['error_code']) for entry in result.data['errors']] == [
            ('diagrams', 'CONNECTIVITY')
        ]
        assert result.source is RecordSource.LOCAL

    @pytest.mark.asyncio
    async def test_both_sides_failing_still_returns_data(self, fallback_manager, store):
        broken = AsyncMock(side_effect=LocalStoreError("disk full"))
        with patch.object(store, 'run', broken):
            result = await fallback_manager.get_project_data('p1')

        assert result.success
        assert result.data['folders'] == []
        assert result.data['diagrams'] == []
        assert [(entry['type'], entry['error']['error_code']) for entry in result.data['errors']] == [
            ('folders', 'LOCAL_STORE'), ('diagrams', 'LOCAL_STORE')
        ]
        assert result.source is RecordSource.LOCAL


class TestSearch:
    """Test content search."""

    @pytest.mark.asyncio
    async def test_matches_names_and_descriptions(self, any_manager):
        project, folder = await _seed(any_manager)

        result = await any_manager.search_project_content(project['id'], 'CLAIM')

        assert {(hit['type'], hit['name'], hit['match']) for hit in result.data} == {
            ('folder', 'Motor claims', 'name'),
            ('diagram', 'Payout', 'description'),
        }
        assert folder['id'] in {hit['id'] for hit in result.data}

    @pytest.mark.asyncio
    async def test_empty_term_fails(self, manager):
        result = await manager.search_project_content('p1', '   ')
        assert result.error.error_code == 'VALIDATION'

    @pytest.mark.asyncio
    async def test_search_event(self, manager, recorder):
        project, _ = await _seed(manager)
        await manager.search_project_content(project['id'], 'intake')
        event = recorder.of(EventType.PROJECT_CONTENT_SEARCHED)[0]
        assert event.delta['count'] == 1


class TestExport:
    """Test project export."""

    @pytest.mark.asyncio
    async def test_export_snapshot(self, manager, recorder):
        project, _ = await _seed(manager)

        result = await manager.export_project(project['id'])

        assert result.data['project']['id'] == project['id']
        assert len(result.data['folders']) == 1
        assert len(result.data['diagrams']) == 2
        assert result.data['version'] == '1.0'
        assert result.data['exported_at']
        assert EventType.PROJECT_EXPORTED.value in recorder.types()

    @pytest.mark.asyncio
    async def test_export_json(self, local_manager):
        project = (await local_manager.create_project({'name': '理赔流程', 'owner_id': 'u1'})).data

        result = await local_manager.export_project_json(project['id'])

        assert '理赔流程' in result.data
        assert json.loads(result.data)['project']['name'] == '理赔流程'

    @pytest.mark.asyncio
    async def test_export_missing_project(self, manager):
        result = await manager.export_project('ghost')
        assert result.error.error_code == 'PROJECT_NOT_FOUND'


class TestStatusAndEvents:
    """Test status reporting and the shared event bus."""

    @pytest.mark.asyncio
    async def test_initialize_probes_remote(self, manager):
        status = await manager.initialize()
        assert status['mode'] == 'database'
        assert status['is_connected'] is True
        assert status['initialized'] is True

    @pytest.mark.asyncio
    async def test_full_status(self, manager, recorder):
        await manager.create_project({'name': 'Claims', 'owner_id': 'u1'})

        status = await manager.get_full_status()

        assert status['connection']['has_remote'] is True
        assert status['local_counts']['projects'] == 1
        assert status['event_handlers'] == 1
        assert status['timestamp']

    @pytest.mark.asyncio
    async def test_every_repository_publishes_on_one_bus(self, manager):
        seen = []
        unsubscribe = manager.subscribe(ALL_EVENTS, seen.append)
        project = (await manager.create_project({'name': 'Claims', 'owner_id': 'u1'})).data
        await manager.create_folder({'project_id': project['id'], 'name': 'F'})
        await manager.create_diagram({'project_id': project['id'], 'name': 'D'})
        unsubscribe()

        assert [event.type for event in seen] == [
            EventType.PROJECT_CREATED, EventType.FOLDER_CREATED, EventType.DIAGRAM_CREATED
        ]

    @pytest.mark.asyncio
    async def test_close_disposes_engine(self, store, config, session_factory, remote_engine):
        engine = remote_engine
        with patch('services.persistence.database_manager.close_db') as close_db:
            manager = DatabaseManager(session_factory=session_factory, local_store=store,
                                      config=config, engine=engine)
            await manager.close()
        close_db.assert_called_once_with(engine)


class TestFactory:
    """Test assembling a manager from configuration."""

    @pytest.mark.asyncio
    async def test_builds_remote_from_url(self, tmp_path, make_config):
        config = make_config(DATABASE_URL=f"sqlite:///{tmp_path / 'app.db'}")
        manager = build_database_manager(config)
        try:
            assert manager.connection.has_remote
            assert await manager.check_table_exists('diagrams')
            created = await manager.create_project({'name': 'Claims', 'owner_id': 'u1'})
            assert created.source is RecordSource.REMOTE
        finally:
            await manager.close()

    @pytest.mark.asyncio
    async def test_local_only_without_url(self, make_config):
        config = make_config(DATABASE_URL='')
        manager = build_database_manager(config)
        assert manager.get_connection_status()['mode'] == 'local'
        created = await manager.create_project({'name': 'Claims', 'owner_id': 'u1'})
        assert created.source is RecordSource.LOCAL

    def test_unreachable_redis_degrades_to_file(self, tmp_path, make_config):
        config = make_config(LOCAL_STORE_BACKEND='redis',
                             LOCAL_STORE_DIR=str(tmp_path / 'store'))
        with patch('services.persistence.factory.init_redis_sync',
                   side_effect=RedisStartupError("refused")):
            store = build_local_store(config)
        assert store.backend.name == 'file'


@pytest.fixture(params=['remote', 'local'])
def any_manager(request, manager, local_manager):
    return manager if request.param == 'remote' else local_manager
