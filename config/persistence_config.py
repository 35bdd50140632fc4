"""Persistence layer settings.

Remote backend URL, local fallback store selection and the timing limits
used by the connection manager and the diagram repository.
"""
import logging
from typing import TYPE_CHECKING, Any

logger = logging.getLogger(__name__)

LOCAL_STORE_BACKENDS = ('memory', 'file', 'redis')


class PersistenceConfigMixin:
    """Mixin class for persistence settings.

    This mixin expects the class to inherit from BaseConfig or provide
    _get_cached_value, _get_bool, _get_int and _get_float.
    """

    if TYPE_CHECKING:
        def _get_cached_value(self, _key: str, _default: Any = None) -> Any:
            """Type stub: method provided by BaseConfig."""

        def _get_bool(self, _key: str, _default: bool = False) -> bool:
            """Type stub: method provided by BaseConfig."""
            return False

        def _get_int(self, _key: str, _default: int, _minimum: int = 0) -> int:
            """Type stub: method provided by BaseConfig."""
            return 0

        def _get_float(self, _key: str, _default: float) -> float:
            """Type stub: method provided by BaseConfig."""
            return 0.0

    @property
    def DATABASE_URL(self) -> str:
        """Remote backend URL. Empty means no remote is configured."""
        return str(self._get_cached_value('DATABASE_URL', '') or '').strip()

    @property
    def FORCE_LOCAL(self) -> bool:
        """Initial mode preference when nothing is persisted yet."""
        return self._get_bool('BPMN_FORCE_LOCAL', False)

    @property
    def LOCAL_STORE_BACKEND(self) -> str:
        backend = str(self._get_cached_value('LOCAL_STORE_BACKEND', 'file')).strip().lower()
        if backend not in LOCAL_STORE_BACKENDS:
            logger.warning("Invalid LOCAL_STORE_BACKEND '%s', using file", backend)
            return 'file'
        return backend

    @property
    def LOCAL_STORE_DIR(self) -> str:
        return str(self._get_cached_value('LOCAL_STORE_DIR', 'data/local_store'))

    @property
    def LOCAL_STORE_NAMESPACE(self) -> str:
        namespace = str(self._get_cached_value('LOCAL_STORE_NAMESPACE', 'bpmn')).strip()
        return namespace or 'bpmn'

    @property
    def REDIS_URL(self) -> str:
        return str(self._get_cached_value('REDIS_URL', 'redis://localhost:6379/0'))

    @property
    def REMOTE_TIMEOUT_SECONDS(self) -> float:
        """Per-call timeout on remote work; a timeout triggers local fallback."""
        return self._get_float('REMOTE_TIMEOUT_SECONDS', 10.0)

    @property
    def SESSION_LIVENESS_MINUTES(self) -> int:
        """Collaboration sessions older than this are not live."""
        return self._get_int('SESSION_LIVENESS_MINUTES', 5, minimum=1)

    @property
    def ACTIVITY_LOG_LIMIT(self) -> int:
        """Number of newest activity entries the local store keeps."""
        return self._get_int('ACTIVITY_LOG_LIMIT', 1000, minimum=1)

    def get_persistence_summary(self) -> dict:
        """Non-secret view of the persistence settings for status output."""
        return {
            'has_remote': bool(self.DATABASE_URL),
            'force_local': self.FORCE_LOCAL,
            'local_store_backend': self.LOCAL_STORE_BACKEND,
            'local_store_namespace': self.LOCAL_STORE_NAMESPACE,
            'remote_timeout_seconds': self.REMOTE_TIMEOUT_SECONDS,
            'session_liveness_minutes': self.SESSION_LIVENESS_MINUTES,
            'activity_log_limit': self.ACTIVITY_LOG_LIMIT,
        }
