"""
Local Store Tests
=================

Tests for the local fallback store and its backends:
- Memory and file backends
- Redis backend over a mocked client
- Transactions, per-key locking and corrupt values

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import asyncio
import json
import threading
import time
from unittest.mock import MagicMock

import pytest
import redis

from services.persistence.local_store import (
    ENTITY_KEYS,
    FOLDERS,
    PREFERENCES,
    PROJECTS,
    FileBackend,
    LocalStore,
    LocalStoreError,
    MemoryBackend,
    RedisBackend,
    create_local_store,
)
from services.redis.redis_client import RedisOperations


class TestMemoryStore:
    """Test read/write behaviour on the memory backend."""

    @pytest.fixture
    def store(self):
        return LocalStore(MemoryBackend(), namespace='t')

    @pytest.mark.asyncio
    async def test_missing_keys_have_defaults(self, store):
        assert await store.read(PROJECTS) == []
        assert await store.read(PREFERENCES) == {}

    @pytest.mark.asyncio
    async def test_values_are_namespaced(self, store):
        await store.write(PROJECTS, [{'id': 'p1'}])
        assert await store.backend.keys('t:') == ['t:projects']

    @pytest.mark.asyncio
    async def test_read_returns_copies(self, store):
        await store.write(PROJECTS, [{'id': 'p1'}])
        rows = await store.read(PROJECTS)
        rows.append({'id': 'p2'})
        assert await store.read(PROJECTS) == [{'id': 'p1'}]

    @pytest.mark.asyncio
    async def test_transaction_discards_on_error(self, store):
        await store.write(FOLDERS, [{'id': 'f1'}])
        with pytest.raises(RuntimeError):
            async with store.transaction(FOLDERS) as data:
                data[FOLDERS].append({'id': 'f2'})
                raise RuntimeError("boom")
        assert await store.read(FOLDERS) == [{'id': 'f1'}]

    @pytest.mark.asyncio
    async def test_concurrent_transactions_serialise(self, store):
        """Read-modify-write under the key lock never loses an append."""
        async def append(i):
            async with store.transaction(FOLDERS) as data:
                await asyncio.sleep(0)
                data[FOLDERS].append({'id': f'f{i}'})

        await asyncio.gather(*(append(i) for i in range(20)))
        assert len(await store.read(FOLDERS)) == 20

    @pytest.mark.asyncio
    async def test_upsert_many_tags_sync_state(self, store):
        await store.upsert_many(FOLDERS, [{'id': 'f1', 'name': 'a'}], pending_sync=True)
        await store.upsert_many(FOLDERS, [{'id': 'f1', 'name': 'b'}, {'id': 'f2', 'name': 'c'}],
                                keep_pending=True)
        rows = {row['id']: row for row in await store.read(FOLDERS)}
        assert rows['f1'] == {'id': 'f1', 'name': 'a', 'pending_sync': True}
        assert rows['f2']['pending_sync'] is False

    @pytest.mark.asyncio
    async def test_remove_ids(self, store):
        await store.write(FOLDERS, [{'id': 'f1'}, {'id': 'f2'}, {'id': 'f3'}])
        assert await store.remove_ids(FOLDERS, ['f1', 'f3', 'missing']) == 2
        assert await store.read(FOLDERS) == [{'id': 'f2'}]

    @pytest.mark.asyncio
    async def test_clear_keeps_preferences(self, store):
        await store.write(PROJECTS, [{'id': 'p1'}])
        await store.write(PREFERENCES, {'force_local': True})
        cleared = await store.clear()
        assert cleared == sorted(ENTITY_KEYS)
        assert await store.read(PROJECTS) == []
        assert await store.read(PREFERENCES) == {'force_local': True}

    @pytest.mark.asyncio
    async def test_corrupt_value_reads_as_empty(self, store):
        await store.backend.save({'t:projects': '{not json'})
        assert await store.read(PROJECTS) == []

    @pytest.mark.asyncio
    async def test_counts(self, store):
        await store.write(PROJECTS, [{'id': 'p1'}, {'id': 'p2'}])
        counts = await store.counts()
        assert counts[PROJECTS] == 2
        assert counts[FOLDERS] == 0


class TestFileBackend:
    """Test the JSON file backend."""

    @pytest.mark.asyncio
    async def test_round_trip_through_files(self, tmp_path):
        store = LocalStore(FileBackend(str(tmp_path)), namespace='bpmn')
        await store.write(PROJECTS, [{'id': 'p1', 'name': '流程'}])

        path = tmp_path / 'bpmn__projects.json'
        assert path.exists()
        assert json.loads(path.read_text(encoding='utf-8')) == [{'id': 'p1', 'name': '流程'}]

        reopened = LocalStore(FileBackend(str(tmp_path)), namespace='bpmn')
        assert await reopened.read(PROJECTS) == [{'id': 'p1', 'name': '流程'}]
        assert list(tmp_path.glob('*.tmp')) == []

    @pytest.mark.asyncio
    async def test_keys_and_delete(self, tmp_path):
        backend = FileBackend(str(tmp_path))
        await backend.save({'bpmn:projects': '[]', 'bpmn:folders': '[]'})
        assert await backend.keys('bpmn:') == ['bpmn:folders', 'bpmn:projects']
        await backend.delete(['bpmn:folders', 'bpmn:missing'])
        assert await backend.keys('bpmn:') == ['bpmn:projects']


class TestRedisBackend:
    """Test the Redis backend over a mocked client."""

    @pytest.fixture
    def client(self):
        data = {}
        client = MagicMock()
        client.get.side_effect = data.get
        pipe = MagicMock()
        pipe.set.side_effect = lambda key, value: data.__setitem__(key, value)
        client.pipeline.return_value = pipe
        client.delete.side_effect = lambda *keys: sum(1 for key in keys if data.pop(key, None) is not None)
        client.scan.side_effect = lambda cursor, match, count: (
            0, [key for key in data if key.startswith(match.rstrip('*'))]
        )
        client.data = data
        return client

    @pytest.mark.asyncio
    async def test_write_and_read(self, client):
        store = LocalStore(RedisBackend(RedisOperations(client)), namespace='bpmn')
        await store.write(PROJECTS, [{'id': 'p1'}])
        assert client.data['bpmn:projects'] == '[{"id": "p1"}]'
        assert await store.read(PROJECTS) == [{'id': 'p1'}]
        client.pipeline.assert_called_with(transaction=True)

    @pytest.mark.asyncio
    async def test_clear_deletes_keys(self, client):
        store = LocalStore(RedisBackend(RedisOperations(client)), namespace='bpmn')
        await store.write(PROJECTS, [{'id': 'p1'}])
        await store.clear([PROJECTS])
        assert 'bpmn:projects' not in client.data

    @pytest.mark.asyncio
    async def test_redis_failure_becomes_local_store_error(self, client):
        client.get.side_effect = redis.ResponseError("WRONGTYPE")
        store = LocalStore(RedisBackend(RedisOperations(client)), namespace='bpmn')
        with pytest.raises(LocalStoreError) as exc_info:
            await store.read(PROJECTS)
        assert exc_info.value.error_code == 'LOCAL_STORE'
        assert exc_info.value.fallback_eligible is False

    @pytest.mark.asyncio
    async def test_slow_client_runs_off_the_event_loop(self, client):
        loop_thread = threading.get_ident()
        callers = []

        def slow_get(key):
            callers.append(threading.get_ident())
            time.sleep(0.2)
            return client.data.get(key)

        client.get.side_effect = slow_get
        store = LocalStore(RedisBackend(RedisOperations(client)), namespace='bpmn')
        finished = []

        async def read():
            rows = await store.read(PROJECTS)
            finished.append('read')
            return rows

        async def ticker():
            for _ in range(5):
                await asyncio.sleep(0.01)
            finished.append('ticker')

        rows, _ = await asyncio.gather(read(), ticker())

        assert rows == []
        assert callers and loop_thread not in callers
        # The loop kept running while the client was busy
        assert finished == ['ticker', 'read']


class TestCreateLocalStore:
    """Test backend selection."""

    def test_memory(self):
        assert create_local_store('memory').backend.name == 'memory'

    def test_file(self, tmp_path):
        store = create_local_store('file', namespace='x', directory=str(tmp_path / 'store'))
        assert store.backend.name == 'file'
        assert store.namespace == 'x'
        assert (tmp_path / 'store').is_dir()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_local_store('sqlite')
