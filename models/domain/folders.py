"""
Folder Model
============

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index

from models.domain.profiles import Base, RecordMixin, generate_uuid
from utils.timestamps import utcnow


class Folder(RecordMixin, Base):
    """
    Folder in a project's tree.

    parent_id is None for root folders. sort_order is a dense 0..N-1 rank
    among folders sharing (project_id, parent_id).
    """
    __tablename__ = "folders"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    project_id = Column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_id = Column(
        String(36), ForeignKey("folders.id", ondelete="CASCADE"), nullable=True, index=True
    )
    name = Column(String(200), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    created_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index('ix_folders_scope_order', 'project_id', 'parent_id', 'sort_order'),
    )

    def __repr__(self):
        return f"<Folder {self.id}: {self.name}>"
