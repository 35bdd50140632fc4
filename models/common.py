"""
Common Models and Enums
=======================

Shared enumerations used by the persistence layer, its records and its events.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""
from enum import Enum


class MemberRole(str, Enum):
    """Project membership roles"""
    OWNER = "owner"
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class MemberStatus(str, Enum):
    """Project membership invitation status"""
    PENDING = "pending"
    ACCEPTED = "accepted"


class ItemType(str, Enum):
    """Kinds of tree items that share a sibling ordering"""
    FOLDER = "folder"
    DIAGRAM = "diagram"


class ConnectionMode(str, Enum):
    """Where operations are sent first"""
    LOCAL = "local"
    REMOTE = "database"


class RecordSource(str, Enum):
    """Which store served a call"""
    REMOTE = "remote"
    LOCAL = "local"


class EventType(str, Enum):
    """Domain events published by the repositories and the façade"""
    # Projects
    PROJECT_CREATED = "projectCreated"
    PROJECT_UPDATED = "projectUpdated"
    PROJECT_DELETED = "projectDeleted"
    PROJECT_FETCHED = "projectFetched"
    USER_PROJECTS_LOADED = "userProjectsLoaded"
    PROJECT_MEMBER_ADDED = "projectMemberAdded"
    PROJECT_MEMBER_ROLE_UPDATED = "projectMemberRoleUpdated"
    PROJECT_MEMBER_REMOVED = "projectMemberRemoved"

    # Folders
    FOLDER_CREATED = "folderCreated"
    FOLDER_UPDATED = "folderUpdated"
    FOLDER_DELETED = "folderDeleted"
    FOLDER_RENAMED = "folderRenamed"
    PROJECT_FOLDERS_FETCHED = "projectFoldersFetched"
    FOLDER_ORDER_UPDATED = "folderOrderUpdated"
    ITEM_ORDER_UPDATED = "itemOrderUpdated"

    # Diagrams
    DIAGRAM_CREATED = "diagramCreated"
    DIAGRAM_UPDATED = "diagramUpdated"
    DIAGRAM_DELETED = "diagramDeleted"
    PROJECT_DIAGRAMS_FETCHED = "projectDiagramsFetched"
    DIAGRAM_ORDER_UPDATED = "diagramOrderUpdated"
    COLLABORATION_SESSION_UPSERTED = "collaborationSessionUpserted"
    COLLABORATION_SESSION_ENDED = "collaborationSessionEnded"
    ACTIVITY_LOG_CREATED = "activityLogCreated"

    # Connection
    CONNECTION_TEST_SUCCEEDED = "connectionTestSucceeded"
    CONNECTION_TEST_FAILED = "connectionTestFailed"
    MODE_CHANGED = "modeChanged"
    LOCAL_DATA_CLEARED = "localDataCleared"
    PROFILE_UPSERTED = "profileUpserted"

    # Façade
    PROJECT_DATA_LOADED = "projectDataLoaded"
    PROJECT_CONTENT_SEARCHED = "projectContentSearched"
    PROJECT_EXPORTED = "projectExported"
