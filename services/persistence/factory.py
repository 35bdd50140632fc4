"""
Persistence Factory
===================

Builds a DatabaseManager from configuration: the SQLAlchemy engine and
session factory from DATABASE_URL, and the local store from
LOCAL_STORE_BACKEND.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

import logging
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.database import create_remote_engine, create_session_factory, init_db
from config.settings import Config
from services.persistence.database_manager import DatabaseManager
from services.persistence.events import EventBus
from services.persistence.local_store import LocalStore, create_local_store
from services.redis.redis_client import RedisOperations, RedisStartupError, init_redis_sync

logger = logging.getLogger(__name__)


def build_local_store(config: Config) -> LocalStore:
    """
    Local store for the configured backend.

    An unreachable Redis degrades to the file backend so the fallback path
    itself stays available.
    """
    backend = config.LOCAL_STORE_BACKEND
    redis_operations = None
    if backend == 'redis':
        try:
            redis_operations = RedisOperations(init_redis_sync(config.REDIS_URL))
        except RedisStartupError as e:
            logger.error("[Factory] Redis local store unavailable, using file backend: %s", e)
            backend = 'file'
    return create_local_store(
        backend,
        namespace=config.LOCAL_STORE_NAMESPACE,
        directory=config.LOCAL_STORE_DIR,
        redis_operations=redis_operations,
    )


def build_database_manager(config: Optional[Config] = None,
                           session_factory: Optional[Callable[[], Session]] = None,
                           local_store: Optional[LocalStore] = None,
                           event_bus: Optional[EventBus] = None,
                           create_tables: bool = True) -> DatabaseManager:
    """
    Assemble a DatabaseManager.

    Args:
        config: Configuration, read from the environment when omitted
        session_factory: Use this remote instead of building one from DATABASE_URL
        local_store: Use this store instead of building one from LOCAL_STORE_BACKEND
        event_bus: Shared bus, a new one when omitted
        create_tables: Create missing workspace tables on the remote

    Returns:
        An uninitialized manager; await manager.initialize() before use.
    """
    config = config or Config()
    engine = None

    if session_factory is None and config.DATABASE_URL:
        try:
            engine = create_remote_engine(config.DATABASE_URL)
            if create_tables:
                init_db(engine)
            session_factory = create_session_factory(engine)
        except SQLAlchemyError as e:
            # Remote stays configured; calls fall back until it recovers
            logger.error("[Factory] Remote backend setup failed: %s", e)
            if engine is not None:
                session_factory = create_session_factory(engine)
    elif session_factory is None:
        logger.info("[Factory] DATABASE_URL not set, running local-only")

    return DatabaseManager(
        session_factory=session_factory,
        local_store=local_store or build_local_store(config),
        event_bus=event_bus,
        config=config,
        engine=engine,
    )
