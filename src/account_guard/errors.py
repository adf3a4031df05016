"""Account guard error types.

Expected outcomes (lockout, rate limit, wrong code) are reported through result
objects. These exceptions cover the remaining cases.
"""

from __future__ import annotations


class AccountGuardError(Exception):
    """Base class for all account-guard errors."""


class RateLimitExceededError(AccountGuardError):
    """Raised by :meth:`RateLimiter.limit` wrapped callables when the action is throttled.

    Attributes:
        retry_after: Seconds until the caller may try again.
    """

    def __init__(self, message: str, retry_after: int) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class TwoFactorStateError(AccountGuardError):
    """Raised when a 2FA transition is requested from the wrong state."""


class StorageError(AccountGuardError):
    """Raised when the durable store cannot be read or written."""
