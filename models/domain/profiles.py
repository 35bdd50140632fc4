"""User Profile Model.

Declarative base for the workspace tables plus the profile row that the
connection probe targets.

Copyright 2024-2025 北京思源智教科技有限公司 (Beijing Siyuan Zhijiao Technology Co., Ltd.)
All Rights Reserved
Proprietary License
"""
from datetime import datetime
import uuid

from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import declarative_base

from utils.timestamps import to_iso, utcnow


Base = declarative_base()


def generate_uuid():
    """Generate a UUID string for record IDs."""
    return str(uuid.uuid4())


class RecordMixin:
    """Plain-dict view of a row, same shape as the local store records."""

    def to_dict(self):
        data = {}
        for column in self.__table__.columns:
            value = getattr(self, column.key)
            if isinstance(value, datetime):
                value = to_iso(value)
            data[column.key] = value
        return data


class Profile(RecordMixin, Base):
    """
    User profile.

    Authentication lives outside this layer; the profile only mirrors the
    identity so memberships and activity can show a display name.
    """
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    email = Column(String(255), nullable=False, index=True)
    display_name = Column(String(200), nullable=True)
    avatar_url = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Profile {self.id}: {self.email}>"
