"""
Diagram Storage Models
======================

Diagrams, their collaboration sessions and the activity log.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Boolean, JSON, Index, UniqueConstraint
)

from models.domain.profiles import Base, RecordMixin, generate_uuid
from utils.timestamps import utcnow


class Diagram(RecordMixin, Base):
    """
    BPMN diagram stored as markup text.

    Supports soft delete: rows with is_active=False are kept for recovery but
    excluded from every listing. version is owned by the persistence layer
    and increases by one on each update.
    """
    __tablename__ = "diagrams"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    project_id = Column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    folder_id = Column(
        String(36), ForeignKey("folders.id", ondelete="SET NULL"), nullable=True, index=True
    )

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=False, default='')

    version = Column(Integer, nullable=False, default=1)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_by = Column(String(36), nullable=True)
    last_modified_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_diagrams_scope_order', 'project_id', 'folder_id', 'is_active', 'sort_order'),
    )

    def __repr__(self):
        return f"<Diagram {self.id}: {self.name} v{self.version}>"


class CollaborationSession(RecordMixin, Base):
    """Liveness record of a user viewing or editing a diagram."""
    __tablename__ = "collaboration_sessions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    diagram_id = Column(
        String(36), ForeignKey("diagrams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(36), nullable=False, index=True)
    session_data = Column(JSON, nullable=False, default=dict)
    last_activity = Column(DateTime, default=utcnow, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint('diagram_id', 'user_id', name='uq_collaboration_sessions_diagram_user'),
    )


class ActivityLog(RecordMixin, Base):
    """
    Append-only activity entry.

    References are plain ids so entries outlive the entities they describe.
    """
    __tablename__ = "activity_logs"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    project_id = Column(String(36), nullable=True, index=True)
    diagram_id = Column(String(36), nullable=True)
    user_id = Column(String(36), nullable=True)
    action = Column(String(100), nullable=False)
    entity_type = Column(String(50), nullable=True)
    entity_id = Column(String(36), nullable=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index('ix_activity_logs_project_created', 'project_id', 'created_at'),
    )
