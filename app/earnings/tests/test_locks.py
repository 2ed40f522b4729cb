"""
Tests for distributed locking utilities.

Tests the DistributedLock class which keeps two balance-recovery runs from
fanning out at the same time.
"""

import pytest

from earnings.exceptions import LockAcquisitionError
from earnings.locks import DistributedLock


class TestDistributedLock:
    """Tests for DistributedLock class."""

    def test_acquire_success(self, mock_redis):
        """Should acquire lock when available."""
        lock = DistributedLock("test:key", ttl=30)
        result = lock.acquire()

        assert result is True
        assert lock.is_held is True
        # Verify set was called with correct args: key, token, nx=True, ex=ttl
        call_args = mock_redis.set.call_args
        assert call_args[0][0] == "lock:test:key"
        assert call_args[1]["nx"] is True
        assert call_args[1]["ex"] == 30

    def test_acquire_generates_unique_token(self, mock_redis):
        lock1 = DistributedLock("test:key1")
        lock2 = DistributedLock("test:key2")

        lock1.acquire()
        lock2.acquire()

        assert lock1._token != lock2._token

    def test_acquire_raises_when_held(self, mock_redis):
        """Should raise immediately without waiting if the lock is taken."""
        mock_redis.set.return_value = False

        lock = DistributedLock("test:key", ttl=30)

        with pytest.raises(LockAcquisitionError) as exc_info:
            lock.acquire()

        assert "already held" in str(exc_info.value)
        assert exc_info.value.details["key"] == "lock:test:key"
        assert lock.is_held is False
        mock_redis.set.assert_called_once()

    def test_release_success(self, mock_redis):
        lock = DistributedLock("test:key")
        lock.acquire()
        result = lock.release()

        assert result is True
        assert lock.is_held is False
        mock_redis.eval.assert_called_once()

    def test_release_only_if_owned(self, mock_redis):
        """Should only release lock if we own it (token matches)."""
        mock_redis.eval.return_value = 0  # Script returns 0 = token didn't match

        lock = DistributedLock("test:key")
        lock.acquire()
        result = lock.release()

        assert result is False

    def test_release_without_acquire_returns_false(self, mock_redis):
        lock = DistributedLock("test:key")

        assert lock.release() is False
        mock_redis.eval.assert_not_called()

    def test_context_manager_releases_on_error(self, mock_redis):
        with pytest.raises(ValueError):
            with DistributedLock("test:key"):
                raise ValueError("boom")

        mock_redis.eval.assert_called_once()
