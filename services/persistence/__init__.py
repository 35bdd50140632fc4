"""
Workspace Persistence Module

Remote/local persistence of projects, folders and diagrams for the
collaborative diagram editor.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

from .database_manager import DatabaseManager
from .events import ALL_EVENTS, DomainEvent, EventBus
from .exceptions import (
    ConflictError,
    ConnectivityError,
    DuplicateError,
    LastOwnerError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from .factory import build_database_manager
from .local_store import LocalStore, create_local_store

__all__ = [
    "DatabaseManager",
    "build_database_manager",
    "EventBus",
    "DomainEvent",
    "ALL_EVENTS",
    "LocalStore",
    "create_local_store",
    "PersistenceError",
    "ConnectivityError",
    "ConflictError",
    "DuplicateError",
    "NotFoundError",
    "ValidationError",
    "LastOwnerError",
]
