"""Services package for the BPMN workspace persistence layer.

This package contains:
- Persistence services (connection manager, repositories, database manager)
- Redis client used by the Redis-backed local store

Import directly from subpackages:
    from services.persistence import DatabaseManager, build_database_manager
    from services.redis.redis_client import init_redis_sync
"""

__all__ = []
