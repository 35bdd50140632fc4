"""
Persistence-specific exceptions for better error handling.

Every failure inside the persistence layer is one of these kinds. They are
raised by the stores and caught by the connection manager, which either
falls back to the local store or turns them into a structured result.
"""

from typing import Optional


class PersistenceError(Exception):
    """Base exception for persistence-related errors."""

    # Whether a failure of this kind on the remote path is retried locally
    fallback_eligible = True

    def __init__(self, message: str, error_code: Optional[str] = None, context: Optional[dict] = None):
        """
        Initialize persistence error.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            context: Additional context (entity ids, table names, etc.)
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}

    def to_dict(self) -> dict:
        """Structured form used in operation results."""
        return {
            "error": self.message,
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "context": self.context,
        }


class ConnectivityError(PersistenceError):
    """Raised when the remote backend is unreachable, times out, or lacks a table."""

    def __init__(self, message: str, error_code: str = "CONNECTIVITY", context: Optional[dict] = None):
        super().__init__(message, error_code=error_code, context=context)


class ConflictError(PersistenceError):
    """Raised on a uniqueness or version conflict."""

    def __init__(self, message: str, error_code: str = "CONFLICT", context: Optional[dict] = None):
        super().__init__(message, error_code=error_code, context=context)


class DuplicateError(ConflictError):
    """
    Raised when a unique key is already taken (e.g. an existing member).

    The record exists remotely, so writing it locally would only diverge.
    """

    fallback_eligible = False

    def __init__(self, message: str, context: Optional[dict] = None):
        super().__init__(message, error_code="DUPLICATE", context=context)


class NotFoundError(PersistenceError):
    """Raised when an entity id is absent."""

    def __init__(self, entity: str, entity_id: Optional[str], message: Optional[str] = None):
        super().__init__(
            message or f"{entity.capitalize()} {entity_id} not found",
            error_code=f"{entity.upper()}_NOT_FOUND",
            context={"entity": entity, "entity_id": entity_id}
        )
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(PersistenceError):
    """Raised for invalid input. Never retried and never falls back."""

    fallback_eligible = False

    def __init__(self, message: str, error_code: str = "VALIDATION", context: Optional[dict] = None):
        super().__init__(message, error_code=error_code, context=context)


class LastOwnerError(ValidationError):
    """Raised when a membership change would leave a project without an owner."""

    def __init__(self, project_id: str, user_id: str):
        super().__init__(
            f"Project {project_id} must keep at least one owner",
            error_code="LAST_OWNER",
            context={"project_id": project_id, "user_id": user_id}
        )
        self.project_id = project_id
        self.user_id = user_id
