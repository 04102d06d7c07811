"""Redis client for the single-flight clustering lock."""

import logging

import redis as sync_redis
from redis.exceptions import LockError

from hotspots.core.config import settings

logger = logging.getLogger(__name__)

# Sync Redis pool for Celery workers
# Using ConnectionPool prevents connection leaks by reusing connections
sync_redis_pool = sync_redis.ConnectionPool.from_url(
    str(settings.redis_url),
    decode_responses=True,
    max_connections=20,
)


def get_sync_redis() -> sync_redis.Redis:
    """Get sync Redis client from connection pool."""
    return sync_redis.Redis(connection_pool=sync_redis_pool)


# Clustering run lock
CLUSTERING_LOCK_KEY = "hotspots:clustering:run-lock"


class ClusteringRunLock:
    """Non-blocking, TTL-bound lock guarding hotspot reconciliation.

    Only one clustering run may reconcile against persisted hotspots at a
    time. The TTL releases the lock if a worker dies mid-run.

    Usage:
        lock = ClusteringRunLock(redis_client)
        if lock.acquire():
            try:
                ...
            finally:
                lock.release()
    """

    def __init__(
        self,
        client: sync_redis.Redis,
        key: str = CLUSTERING_LOCK_KEY,
        timeout_seconds: int | None = None,
    ):
        self.key = key
        self.timeout_seconds = timeout_seconds or settings.clustering_lock_timeout_seconds
        self._lock = client.lock(key, timeout=self.timeout_seconds, blocking=False)

    def acquire(self) -> bool:
        """Try to take the lock without waiting."""
        acquired = bool(self._lock.acquire(blocking=False))
        if acquired:
            logger.debug(f"Acquired clustering lock {self.key}")
        else:
            logger.info(f"Clustering lock {self.key} is held by another run")
        return acquired

    def release(self) -> None:
        """Release the lock, tolerating expiry."""
        try:
            self._lock.release()
        except LockError as e:
            # Lock expired (TTL) or was taken over; nothing left to release
            logger.warning(f"Clustering lock {self.key} was not held at release: {e}")


def get_clustering_lock() -> ClusteringRunLock:
    """Build the clustering run lock on the shared pool."""
    return ClusteringRunLock(get_sync_redis())
