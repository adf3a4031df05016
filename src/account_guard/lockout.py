"""Per-user failed-login tracking with a fixed-count lockout."""

from __future__ import annotations

import logging

from pydantic import BaseModel, Field

from account_guard.clock import Clock, SystemClock
from account_guard.models import LoginAttemptInfo
from account_guard.storage import RecordStore

logger = logging.getLogger(__name__)

KEY_PREFIX = "loginAttempts"


class LockoutConfig(BaseModel):
    """Lockout policy: *max_attempts* failures lock the account until the cycle expires."""

    max_attempts: int = Field(default=4, gt=0)
    lockout_duration_ms: int = Field(default=24 * 60 * 60 * 1000, gt=0)


class LoginAttemptTracker:
    """Counts consecutive failed logins per user and reports lockouts.

    A lockout cycle starts with the first recorded failure and lasts
    ``lockout_duration_ms``. Once the cycle is over the record is purged on
    the next read, so no background timer is needed. Empty user ids are
    ignored and never locked.
    """

    def __init__(
        self,
        store: RecordStore | None = None,
        clock: Clock | None = None,
        config: LockoutConfig | None = None,
    ) -> None:
        self._store = store or RecordStore()
        self._clock = clock or SystemClock()
        self.config = config or LockoutConfig()

    @staticmethod
    def storage_key(user_id: str) -> str:
        return f"{KEY_PREFIX}:{user_id}"

    def _get_attempts(self, key: str) -> LoginAttemptInfo | None:
        """Load the active record, deleting it if its cycle has expired. Caller holds the key lock."""
        info = self._store.load(key, LoginAttemptInfo)
        if info is None:
            return None
        if self._clock.now_ms() - info.first_attempt_timestamp > self.config.lockout_duration_ms:
            self._store.delete(key)
            logger.debug("Expired login attempt record purged for key=%s", key)
            return None
        return info

    def record_failed_attempt(self, user_id: str) -> None:
        if not user_id:
            return
        key = self.storage_key(user_id)
        with self._store.locked(key):
            info = self._get_attempts(key)
            if info is None:
                info = LoginAttemptInfo(count=1, first_attempt_timestamp=self._clock.now_ms())
            else:
                info.count += 1
            self._store.save(key, info)

        if info.count == self.config.max_attempts:
            logger.warning("Account lockout triggered for user_id=%s after %d failed attempts", user_id, info.count)

    def clear_attempts(self, user_id: str) -> None:
        """Forget all failures for *user_id* (called after a successful login)."""
        if not user_id:
            return
        key = self.storage_key(user_id)
        with self._store.locked(key):
            self._store.delete(key)

    def is_locked_out(self, user_id: str) -> bool:
        if not user_id:
            return False
        key = self.storage_key(user_id)
        with self._store.locked(key):
            info = self._get_attempts(key)
        return info is not None and info.count >= self.config.max_attempts

    def get_lockout_time_remaining(self, user_id: str) -> int:
        """Milliseconds until the lockout lifts; ``0`` when not locked out."""
        if not user_id:
            return 0
        key = self.storage_key(user_id)
        with self._store.locked(key):
            info = self._get_attempts(key)
        if info is None or info.count < self.config.max_attempts:
            return 0
        lockout_end = info.first_attempt_timestamp + self.config.lockout_duration_ms
        return max(0, lockout_end - self._clock.now_ms())

    def attempts_remaining(self, user_id: str) -> int:
        """Failures still allowed before the account locks."""
        if not user_id:
            return self.config.max_attempts
        key = self.storage_key(user_id)
        with self._store.locked(key):
            info = self._get_attempts(key)
        used = info.count if info is not None else 0
        return max(0, self.config.max_attempts - used)
