"""
Request Models

Pydantic records validating the input of persistence operations.
"""

from .requests_workspace import (
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

__all__ = [
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
]
