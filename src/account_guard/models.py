"""Persisted records and result objects.

Persisted records serialize with camelCase field names so the stored layout
matches the key patterns documented in :mod:`account_guard.storage`.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class RateLimitState(_Record):
    """Accepted request timestamps and block expiry for one ``action:identifier`` key."""

    requests: list[int] = Field(default_factory=list)
    blocked_until: int = 0


class LoginAttemptInfo(_Record):
    """Consecutive failed logins in the current lockout cycle."""

    count: int = 0
    first_attempt_timestamp: int


class TwoFactorData(_Record):
    """Persisted 2FA state for an account.

    ``used_backup_codes`` is always a subset of ``backup_codes``.
    """

    enabled: bool = False
    secret: str
    verified_at: str | None = None
    backup_codes: list[str] = Field(default_factory=list)
    used_backup_codes: list[str] = Field(default_factory=list)

    @property
    def remaining_backup_codes(self) -> int:
        return len(self.backup_codes) - len(self.used_backup_codes)


# ---------------------------------------------------------------------------
# Result objects
# ---------------------------------------------------------------------------


class RateLimitResult(BaseModel):
    """Outcome of :meth:`RateLimiter.check_rate_limit`.

    ``retry_after`` (seconds) is set when limited; ``remaining_requests`` when allowed.
    """

    is_limited: bool
    retry_after: int | None = None
    remaining_requests: int | None = None


class RateLimitStatus(BaseModel):
    """Read-only view of a rate-limit key."""

    requests_used: int
    max_requests: int
    window_ms: int
    is_blocked: bool
    blocked_until: int | None = None


class TwoFactorOutcome(str, Enum):
    OK = "ok"
    INVALID_FORMAT = "invalid_format"
    INVALID_CODE = "invalid_code"
    RATE_LIMITED = "rate_limited"
    NOT_ENABLED = "not_enabled"
    NO_PENDING_SETUP = "no_pending_setup"


class TwoFactorResult(BaseModel):
    """Outcome of a 2FA operation.

    ``backup_codes`` is populated only when a fresh batch was issued (setup
    completion or regeneration); it is the one chance to show them to the user.
    """

    outcome: TwoFactorOutcome
    message: str = ""
    backup_codes: list[str] = Field(default_factory=list)
    retry_after: int | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is TwoFactorOutcome.OK


class TwoFactorEnrollment(BaseModel):
    """Data shown to the user while a 2FA setup is pending."""

    secret: str
    provisioning_uri: str
    qr_code: str
    expires_at: int


class TwoFactorStatus(BaseModel):
    enabled: bool
    verified_at: str | None = None
    backup_codes_total: int = 0
    backup_codes_remaining: int = 0
    setup_pending: bool = False


class LoginStatus(str, Enum):
    SUCCESS = "success"
    INVALID_CREDENTIALS = "invalid_credentials"
    LOCKED_OUT = "locked_out"
    RATE_LIMITED = "rate_limited"
    TWO_FACTOR_REQUIRED = "two_factor_required"
    TWO_FACTOR_INVALID = "two_factor_invalid"


class LoginResult(BaseModel):
    """Outcome of :meth:`AccountGuard.attempt_login`.

    Attributes:
        status: What happened.
        message: User-facing text suitable for direct display.
        retry_after: Seconds until the login limiter lets the user retry.
        lockout_remaining_ms: Time left on an active lockout.
        newly_locked: ``True`` only on the failure that triggered the lockout.
        attempts_remaining: Failures left before lockout, after an invalid password.
    """

    status: LoginStatus
    message: str = ""
    retry_after: int | None = None
    lockout_remaining_ms: int = 0
    newly_locked: bool = False
    attempts_remaining: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is LoginStatus.SUCCESS
