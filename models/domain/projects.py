"""
Project Models
==============

Projects and their membership list.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, JSON, Index, UniqueConstraint

from models.domain.profiles import Base, RecordMixin, generate_uuid
from utils.timestamps import utcnow


class Project(RecordMixin, Base):
    """
    Top-level container of folders and diagrams.

    The creator is recorded as owner_id and also receives an owner membership
    row in the same unit of work.
    """
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    owner_id = Column(String(36), nullable=False, index=True)
    settings = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_projects_owner_updated', 'owner_id', 'updated_at'),
    )

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class ProjectMember(RecordMixin, Base):
    """Role-based access entry; one per (project, user)."""
    __tablename__ = "project_members"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    project_id = Column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(36), nullable=False, index=True)
    role = Column(String(20), nullable=False, default="viewer")
    status = Column(String(20), nullable=False, default="pending")
    invited_by = Column(String(36), nullable=True)
    joined_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('project_id', 'user_id', name='uq_project_members_project_user'),
    )

    def __repr__(self):
        return f"<ProjectMember {self.project_id}/{self.user_id}: {self.role}>"
