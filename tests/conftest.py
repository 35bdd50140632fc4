"""
Pytest Configuration
====================

Ensures project root is in Python path for imports, and provides the
persistence fixtures shared by the test modules:

- a SQLite-backed remote with the workspace schema
- a broken remote (no schema) that makes every remote call fail
- an in-memory local store and managers wired to each remote

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import sys
from pathlib import Path

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent.absolute()
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


def verify_imports():
    """Verify imports work after path setup."""
    try:
        import importlib
        importlib.util.find_spec('services')
        importlib.util.find_spec('config')
        importlib.util.find_spec('models')
    except (ImportError, AttributeError) as e:
        print(f"Warning: Could not import modules: {e}")
        print(f"Project root: {project_root}")
        print(f"sys.path: {sys.path}")


# Verify imports work
verify_imports()

from config.database import create_remote_engine, create_session_factory, init_db  # noqa: E402
from config.settings import Config  # noqa: E402
from services.persistence.database_manager import DatabaseManager  # noqa: E402
from services.persistence.events import ALL_EVENTS  # noqa: E402
from services.persistence.local_store import LocalStore, MemoryBackend  # noqa: E402


TEST_SETTINGS = {
    'LOCAL_STORE_BACKEND': 'memory',
    'BPMN_FORCE_LOCAL': False,
    'REMOTE_TIMEOUT_SECONDS': 10,
    'SESSION_LIVENESS_MINUTES': 5,
    'ACTIVITY_LOG_LIMIT': 1000,
}


@pytest.fixture
def make_config():
    """Build a Config from the test settings plus overrides."""
    def build(**overrides):
        return Config(dict(TEST_SETTINGS, **overrides))
    return build


@pytest.fixture
def config(make_config):
    """Configuration independent of the environment."""
    return make_config()


@pytest.fixture
def remote_engine(tmp_path):
    """SQLite file with every workspace table."""
    engine = create_remote_engine(f"sqlite:///{tmp_path / 'remote.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(remote_engine):
    return create_session_factory(remote_engine)


@pytest.fixture
def broken_session_factory(tmp_path):
    """Remote without schema: every query fails like an unreachable backend."""
    engine = create_remote_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store():
    return LocalStore(MemoryBackend(), namespace='test')


@pytest.fixture
def manager(session_factory, store, config):
    """Manager in database mode against the working remote."""
    return DatabaseManager(session_factory=session_factory, local_store=store, config=config)


@pytest.fixture
def fallback_manager(broken_session_factory, store, config):
    """Manager in database mode whose every remote call falls back."""
    return DatabaseManager(session_factory=broken_session_factory, local_store=store, config=config)


@pytest.fixture
def local_manager(store, config):
    """Manager without any remote (local mode)."""
    return DatabaseManager(local_store=store, config=config)


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus):
        self.events = []
        bus.subscribe(ALL_EVENTS, self.events.append)

    def types(self):
        return [event.type.value for event in self.events]

    def of(self, event_type):
        return [event for event in self.events if event.type == event_type]


@pytest.fixture
def recorder(manager):
    return EventRecorder(manager.events)
