"""Account Guard: rate limiting, login lockout and two-factor authentication."""

from account_guard.clock import Clock, SystemClock
from account_guard.config import GuardConfig
from account_guard.errors import AccountGuardError, RateLimitExceededError, StorageError, TwoFactorStateError
from account_guard.guard import AccountGuard
from account_guard.lockout import LockoutConfig, LoginAttemptTracker
from account_guard.models import (
    LoginAttemptInfo,
    LoginResult,
    LoginStatus,
    RateLimitResult,
    RateLimitState,
    RateLimitStatus,
    TwoFactorData,
    TwoFactorEnrollment,
    TwoFactorOutcome,
    TwoFactorResult,
    TwoFactorStatus,
)
from account_guard.rate_limiter import DEFAULT_RATE_LIMITS, RateLimitAction, RateLimitConfig, RateLimiter
from account_guard.router import create_security_router
from account_guard.storage import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore, RecordStore
from account_guard.totp import CryptographyTotpProvider, TotpProvider, render_qr_data_uri
from account_guard.two_factor import TwoFactorConfig, TwoFactorManager, generate_backup_codes

__all__ = [
    "AccountGuard",
    "AccountGuardError",
    "Clock",
    "create_security_router",
    "CryptographyTotpProvider",
    "DEFAULT_RATE_LIMITS",
    "generate_backup_codes",
    "GuardConfig",
    "InMemoryKeyValueStore",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "LockoutConfig",
    "LoginAttemptInfo",
    "LoginAttemptTracker",
    "LoginResult",
    "LoginStatus",
    "RateLimitAction",
    "RateLimitConfig",
    "RateLimiter",
    "RateLimitExceededError",
    "RateLimitResult",
    "RateLimitState",
    "RateLimitStatus",
    "RecordStore",
    "render_qr_data_uri",
    "StorageError",
    "SystemClock",
    "TotpProvider",
    "TwoFactorConfig",
    "TwoFactorData",
    "TwoFactorEnrollment",
    "TwoFactorManager",
    "TwoFactorOutcome",
    "TwoFactorResult",
    "TwoFactorStateError",
    "TwoFactorStatus",
]
