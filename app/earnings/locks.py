"""
Redis-based mutual exclusion for earnings background work.

Payout rows themselves are never locked: every row mutation goes through the
version-conditioned write in PayoutManager.update_if_version. The lock here
only keeps two balance-recovery runs from fanning out at the same time.

Usage:
    from earnings.locks import DistributedLock
    from earnings.exceptions import LockAcquisitionError

    lock = DistributedLock("earnings:balance-recovery", ttl=60)
    try:
        lock.acquire()
    except LockAcquisitionError:
        return  # another recovery is in flight
    try:
        requeue_balance_failures()
    finally:
        lock.release()
"""

from __future__ import annotations

import uuid as uuid_module
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from earnings.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis


class DistributedLock:
    """
    Non-blocking Redis lock with TTL.

    Features:
        - Automatic TTL prevents a crashed holder from blocking recovery forever
        - Token-based ownership prevents accidental release by other processes
        - Context manager support

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
    """

    # Lua script for atomic check-and-delete (release)
    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    def __init__(self, key: str, ttl: int = 60) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        """Get Redis connection (lazy initialization)."""
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Try once to acquire the lock.

        Returns:
            True if lock was acquired

        Raises:
            LockAcquisitionError: If another holder has the lock
        """
        token = str(uuid_module.uuid4())
        acquired = self._get_redis().set(self.key, token, nx=True, ex=self.ttl)
        if not acquired:
            raise LockAcquisitionError(
                f"Lock '{self.key}' is already held",
                details={"key": self.key},
            )
        self._token = token
        return True

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Safe to call multiple times; only deletes the key if our token
        still owns it.
        """
        if self._token is None:
            return False

        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    @property
    def is_held(self) -> bool:
        """Check if we currently hold the lock."""
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False  # Don't suppress exceptions


__all__ = ["DistributedLock"]
