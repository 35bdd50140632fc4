"""
Domain Models

SQLAlchemy database models representing the workspace entities.
"""

from .profiles import Base, Profile, RecordMixin, generate_uuid
from .projects import Project, ProjectMember
from .folders import Folder
from .diagrams import Diagram, CollaborationSession, ActivityLog

__all__ = [
    # Base
    "Base",
    "RecordMixin",
    "generate_uuid",
    # Entities
    "Profile",
    "Project",
    "ProjectMember",
    "Folder",
    "Diagram",
    "CollaborationSession",
    "ActivityLog",
]
