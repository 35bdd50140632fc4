"""Workspace Record Models.

Pydantic models validating the plain data objects handed to the project,
folder and diagram repositories. Records are validated once, at construction,
so the stores below only ever see well-formed values.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..common import ItemType, MemberRole, MemberStatus


class ProjectCreateRequest(BaseModel):
    """Request model for creating a project"""
    name: str = Field(..., min_length=1, max_length=200, description="Project name")
    description: Optional[str] = Field(None, description="Free-form description")
    owner_id: str = Field(..., min_length=1, description="Creating user")
    settings: Dict[str, Any] = Field(default_factory=dict, description="Project settings")


class ProjectUpdateRequest(BaseModel):
    """Request model for updating a project"""
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    settings: Optional[Dict[str, Any]] = None


class MemberCreateRequest(BaseModel):
    """Request model for adding a project member"""
    project_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    role: MemberRole = Field(MemberRole.VIEWER)
    status: MemberStatus = Field(MemberStatus.PENDING)
    invited_by: Optional[str] = None


class FolderCreateRequest(BaseModel):
    """Request model for creating a folder"""
    project_id: str = Field(..., min_length=1)
    parent_id: Optional[str] = Field(None, description="Parent folder, None for project root")
    name: str = Field(..., min_length=1, max_length=200)
    created_by: Optional[str] = None


class FolderUpdateRequest(BaseModel):
    """Request model for updating a folder"""
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    parent_id: Optional[str] = None
    sort_order: Optional[int] = Field(None, ge=0)


class DiagramCreateRequest(BaseModel):
    """Request model for creating a diagram"""
    project_id: str = Field(..., min_length=1)
    folder_id: Optional[str] = None
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    content: str = Field('', description="Diagram markup (BPMN XML)")
    created_by: Optional[str] = None

    @model_validator(mode='before')
    @classmethod
    def accept_bpmn_xml(cls, values):
        """Editor code historically sends the markup as 'bpmn_xml'"""
        if isinstance(values, dict) and 'content' not in values and 'bpmn_xml' in values:
            values = dict(values)
            values['content'] = values.pop('bpmn_xml') or ''
        return values


class DiagramUpdateRequest(BaseModel):
    """
    Request model for updating a diagram.

    'version' is accepted but never written: the backend owns it.
    'version_number' is an optional precondition on the remote path.
    """
    model_config = ConfigDict(extra='forbid')

    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = None
    content: Optional[str] = None
    folder_id: Optional[str] = None
    sort_order: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None
    last_modified_by: Optional[str] = None
    version: Optional[int] = None
    version_number: Optional[int] = Field(None, ge=1)

    @model_validator(mode='before')
    @classmethod
    def accept_bpmn_xml(cls, values):
        """Same alias as on create"""
        if isinstance(values, dict) and 'bpmn_xml' in values:
            values = dict(values)
            markup = values.pop('bpmn_xml')
            values.setdefault('content', markup)
        return values


class ProfileUpsertRequest(BaseModel):
    """Request model for creating or replacing a user profile"""
    id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None

    @model_validator(mode='after')
    def default_display_name(self):
        """Fall back to the local part of the e-mail address"""
        if not self.display_name:
            self.display_name = self.email.split('@')[0]
        return self


class SessionUpsertRequest(BaseModel):
    """Request model for a collaboration session heartbeat"""
    diagram_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    session_data: Dict[str, Any] = Field(default_factory=dict)


class ActivityLogRequest(BaseModel):
    """Request model for an activity log entry"""
    project_id: Optional[str] = None
    diagram_id: Optional[str] = None
    user_id: Optional[str] = None
    action: str = Field(..., min_length=1, max_length=100)
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class SortOrderRequest(BaseModel):
    """One entry of a folder or diagram reorder batch"""
    id: str = Field(..., min_length=1)
    sort_order: int = Field(..., ge=0)

    @model_validator(mode='before')
    @classmethod
    def accept_camel_case(cls, values):
        """Drag-drop code sends 'sortOrder'"""
        if isinstance(values, dict) and 'sort_order' not in values and 'sortOrder' in values:
            values = dict(values)
            values['sort_order'] = values.pop('sortOrder')
        return values


class ItemOrderRequest(BaseModel):
    """One entry of a mixed folder/diagram reorder batch"""
    type: ItemType
    id: str = Field(..., min_length=1)
    sort_order: int = Field(..., ge=0)

    @model_validator(mode='before')
    @classmethod
    def accept_drag_drop_shape(cls, values):
        """Accept {type, folderId|diagramId, sortOrder} as sent by the tree widget"""
        if not isinstance(values, dict):
            return values
        values = dict(values)
        if 'id' not in values:
            values['id'] = values.pop('folderId', None) or values.pop('diagramId', None)
        if 'sort_order' not in values and 'sortOrder' in values:
            values['sort_order'] = values.pop('sortOrder')
        return values
