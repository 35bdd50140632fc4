"""
Database Configuration for the Workspace Remote Backend

SQLAlchemy engine and session factory setup, table creation and schema checks.
Nothing here is a module-level singleton: callers build an engine from a URL
and inject the session factory into the connection manager.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""
from pathlib import Path
import logging

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker

from models.domain import (
    Base, Profile, Project, ProjectMember, Folder, Diagram,
    CollaborationSession, ActivityLog
)

logger = logging.getLogger(__name__)

WORKSPACE_TABLES = [
    Profile.__tablename__,
    Project.__tablename__,
    ProjectMember.__tablename__,
    Folder.__tablename__,
    Diagram.__tablename__,
    CollaborationSession.__tablename__,
    ActivityLog.__tablename__,
]

# Default pool configuration for server databases
DEFAULT_POOL_SIZE = 10        # Base connections
DEFAULT_MAX_OVERFLOW = 20     # Overflow connections
DEFAULT_POOL_TIMEOUT = 30     # Wait time for connection (seconds)


def create_remote_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the SQLAlchemy engine for the remote backend.

    SQLite URLs get check_same_thread=False because remote work runs in worker
    threads; other backends get a pre-pinged, recycled connection pool.
    """
    url = make_url(database_url)
    if url.get_backend_name() == 'sqlite':
        if url.database and url.database != ':memory:':
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=echo
        )
    else:
        engine = create_engine(
            database_url,
            pool_size=DEFAULT_POOL_SIZE,
            max_overflow=DEFAULT_MAX_OVERFLOW,
            pool_timeout=DEFAULT_POOL_TIMEOUT,
            pool_pre_ping=True,          # Test connection before using
            pool_recycle=1800,           # Recycle connections every 30 minutes
            echo=echo
        )
    logger.debug("[Database] Engine created for backend %s", url.get_backend_name())
    return engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory handed to the connection manager."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> list:
    """
    Create missing workspace tables.

    Uses the inspector so existing tables are never touched; returns the
    names of the tables that were created.
    """
    try:
        inspector = inspect(engine)
        existing_tables = set(inspector.get_table_names())
    except Exception as e:
        # create_all() with checkfirst=True still guards against overwrites
        logger.debug("Inspector check failed (assuming new database): %s", e)
        existing_tables = set()

    missing_tables = [name for name in WORKSPACE_TABLES if name not in existing_tables]
    if not missing_tables:
        logger.debug("[Database] All workspace tables present")
        return []

    tables = [Base.metadata.tables[name] for name in missing_tables]
    Base.metadata.create_all(bind=engine, tables=tables, checkfirst=True)
    logger.info("[Database] Created tables: %s", ", ".join(missing_tables))
    return missing_tables


def find_missing_tables(engine: Engine) -> list:
    """Names of workspace tables absent from the remote schema."""
    try:
        existing_tables = set(inspect(engine).get_table_names())
    except Exception as e:
        logger.warning("[Database] Could not inspect schema: %s", e)
        return list(WORKSPACE_TABLES)
    return [name for name in WORKSPACE_TABLES if name not in existing_tables]


def close_db(engine: Engine):
    """
    Close database connections (call on shutdown)
    """
    engine.dispose()
    logger.info("Database connections closed")
