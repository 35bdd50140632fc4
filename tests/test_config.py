"""
Configuration and Model Tests
=============================

Tests for the ambient pieces of the persistence layer:
- Config overrides, environment parsing and defaults
- Database engine setup and schema checks
- Request records, results and persistence exceptions
- Logging formatter and timestamps

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import logging
from datetime import datetime

import pytest
from pydantic import ValidationError as SchemaError

from config.database import (
    WORKSPACE_TABLES, create_remote_engine, find_missing_tables, init_db
)
from config.settings import Config
from models.common import ItemType, MemberRole, RecordSource
from models.requests import (
    DiagramCreateRequest, DiagramUpdateRequest, ItemOrderRequest, ProfileUpsertRequest,
    ProjectUpdateRequest, SortOrderRequest
)
from models.responses import OperationResult
from services.persistence.exceptions import (
    ConflictError, ConnectivityError, DuplicateError, LastOwnerError, NotFoundError, ValidationError
)
from utils.logging_config import UnifiedFormatter, setup_logging
from utils.timestamps import from_iso, to_iso


class TestConfig:
    """Test configuration parsing."""

    def test_defaults(self, monkeypatch):
        for key in ('DATABASE_URL', 'LOCAL_STORE_BACKEND', 'REMOTE_TIMEOUT_SECONDS',
                    'BPMN_FORCE_LOCAL', 'SESSION_LIVENESS_MINUTES'):
            monkeypatch.delenv(key, raising=False)
        cfg = Config()
        assert cfg.DATABASE_URL == ''
        assert cfg.LOCAL_STORE_BACKEND == 'file'
        assert cfg.REMOTE_TIMEOUT_SECONDS == 10.0
        assert cfg.FORCE_LOCAL is False
        assert cfg.SESSION_LIVENESS_MINUTES == 5

    def test_environment_values(self, monkeypatch):
        monkeypatch.setenv('LOCAL_STORE_BACKEND', 'REDIS')
        monkeypatch.setenv('BPMN_FORCE_LOCAL', 'true')
        monkeypatch.setenv('REMOTE_TIMEOUT_SECONDS', '2.5')
        cfg = Config()
        assert cfg.LOCAL_STORE_BACKEND == 'redis'
        assert cfg.FORCE_LOCAL is True
        assert cfg.REMOTE_TIMEOUT_SECONDS == 2.5

    def test_overrides_win_over_environment(self, monkeypatch):
        monkeypatch.setenv('LOCAL_STORE_BACKEND', 'redis')
        cfg = Config({'LOCAL_STORE_BACKEND': 'memory'})
        assert cfg.LOCAL_STORE_BACKEND == 'memory'

    def test_invalid_values_fall_back_to_defaults(self):
        cfg = Config({'LOCAL_STORE_BACKEND': 'mongo', 'REMOTE_TIMEOUT_SECONDS': 'soon',
                      'ACTIVITY_LOG_LIMIT': 0, 'LOG_LEVEL': 'chatty'})
        assert cfg.LOCAL_STORE_BACKEND == 'file'
        assert cfg.REMOTE_TIMEOUT_SECONDS == 10.0
        assert cfg.ACTIVITY_LOG_LIMIT == 1000
        assert cfg.log_level == 'INFO'

    def test_summary_hides_url(self):
        cfg = Config({'DATABASE_URL': 'postgresql://user:secret@db/app'})
        summary = cfg.get_persistence_summary()
        assert summary['has_remote'] is True
        assert 'secret' not in str(summary)


class TestDatabaseSetup:
    """Test engine creation and schema helpers."""

    def test_init_db_creates_workspace_tables(self, tmp_path):
        engine = create_remote_engine(f"sqlite:///{tmp_path / 'nested' / 'remote.db'}")
        assert find_missing_tables(engine) == WORKSPACE_TABLES
        assert sorted(init_db(engine)) == sorted(WORKSPACE_TABLES)
        assert find_missing_tables(engine) == []
        assert init_db(engine) == []
        engine.dispose()


class TestRequestRecords:
    """Test input validation of the request records."""

    def test_bpmn_xml_alias(self):
        record = DiagramCreateRequest(project_id='p1', name='Flow', bpmn_xml='<definitions/>')
        assert record.content == '<definitions/>'
        update = DiagramUpdateRequest.model_validate({'bpmn_xml': '<x/>'})
        assert update.content == '<x/>'

    def test_update_rejects_unknown_fields(self):
        with pytest.raises(SchemaError):
            ProjectUpdateRequest.model_validate({'owner_id': 'someone-else'})

    def test_order_records_accept_drag_drop_shape(self):
        assert SortOrderRequest.model_validate({'id': 'f1', 'sortOrder': 2}).sort_order == 2
        item = ItemOrderRequest.model_validate({'type': 'diagram', 'diagramId': 'd1', 'sortOrder': 0})
        assert item.type is ItemType.DIAGRAM
        assert item.id == 'd1'

    def test_negative_sort_order_rejected(self):
        with pytest.raises(SchemaError):
            SortOrderRequest(id='f1', sort_order=-1)

    def test_profile_display_name_default(self):
        profile = ProfileUpsertRequest(id='u1', email='ada@example.com')
        assert profile.display_name == 'ada'


class TestResultsAndErrors:
    """Test OperationResult and the persistence exceptions."""

    def test_operation_result(self):
        ok = OperationResult.ok({'id': 'x'}, RecordSource.LOCAL)
        assert ok.success
        assert ok.to_dict()['source'] == 'local'

        failed = OperationResult.fail(NotFoundError('folder', 'f1').to_dict())
        assert not failed.success
        assert failed.error.error_code == 'FOLDER_NOT_FOUND'
        assert failed.error.timestamp is not None

    def test_fallback_eligibility(self):
        assert ConnectivityError("down").fallback_eligible
        assert ConflictError("taken").fallback_eligible
        assert NotFoundError('diagram', 'd1').fallback_eligible
        assert not ValidationError("bad").fallback_eligible
        assert not DuplicateError("dup").fallback_eligible
        assert not LastOwnerError('p1', 'u1').fallback_eligible

    def test_to_dict(self):
        error = LastOwnerError('p1', 'u1').to_dict()
        assert error['error_type'] == 'LastOwnerError'
        assert error['error_code'] == 'LAST_OWNER'
        assert error['context'] == {'project_id': 'p1', 'user_id': 'u1'}

    def test_member_roles(self):
        assert [role.value for role in MemberRole] == ['owner', 'admin', 'editor', 'viewer']


class TestLoggingAndTimestamps:
    """Test the log formatter and timestamp helpers."""

    def test_formatter_tags_persistence_records(self):
        formatter = UnifiedFormatter(use_colors=False)
        record = logging.LogRecord('services.persistence.folder_repository', logging.WARNING,
                                   __file__, 1, "[FolderRepo]  fell   back", None, None)
        line = formatter.format(record)
        assert '| PERS |' in line
        assert 'WARN' in line
        assert line.endswith('[FolderRepo] fell back')

    def test_setup_logging_with_file(self, tmp_path):
        log_file = tmp_path / 'logs' / 'persistence.log'
        setup_logging('DEBUG', str(log_file))
        logging.getLogger('services.persistence.test').info("hello")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert 'hello' in log_file.read_text(encoding='utf-8')
        assert logging.getLogger('services').level == logging.DEBUG
        setup_logging('WARNING')

    def test_iso_round_trip(self):
        moment = datetime(2025, 3, 1, 12, 30, 0, 123)
        text = to_iso(moment)
        assert text == '2025-03-01T12:30:00.000123'
        assert from_iso(text) == moment
        assert from_iso('2025-03-01T12:30:00.000123+00:00') == moment
