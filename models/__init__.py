"""
Workspace Models
================

Pydantic records, result types and SQLAlchemy tables of the persistence layer.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""

from .common import (
    MemberRole,
    MemberStatus,
    ItemType,
    ConnectionMode,
    RecordSource,
    EventType,
)
from .responses import ErrorResponse, OperationResult
from .requests import (
    ProjectCreateRequest,
    ProjectUpdateRequest,
    MemberCreateRequest,
    FolderCreateRequest,
    FolderUpdateRequest,
    DiagramCreateRequest,
    DiagramUpdateRequest,
    ProfileUpsertRequest,
    SessionUpsertRequest,
    ActivityLogRequest,
    SortOrderRequest,
    ItemOrderRequest,
)
from .domain import (
    Base,
    Profile,
    Project,
    ProjectMember,
    Folder,
    Diagram,
    CollaborationSession,
    ActivityLog,
)

__all__ = [
    # Enums
    "MemberRole",
    "MemberStatus",
    "ItemType",
    "ConnectionMode",
    "RecordSource",
    "EventType",
    # Results
    "ErrorResponse",
    "OperationResult",
    # Requests
    "ProjectCreateRequest",
    "ProjectUpdateRequest",
    "MemberCreateRequest",
    "FolderCreateRequest",
    "FolderUpdateRequest",
    "DiagramCreateRequest",
    "DiagramUpdateRequest",
    "ProfileUpsertRequest",
    "SessionUpsertRequest",
    "ActivityLogRequest",
    "SortOrderRequest",
    "ItemOrderRequest",
    # Tables
    "Base",
    "Profile",
    "Project",
    "ProjectMember",
    "Folder",
    "Diagram",
    "CollaborationSession",
    "ActivityLog",
]
