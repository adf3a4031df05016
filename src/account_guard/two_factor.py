"""Two-factor authentication lifecycle: setup, verification, backup codes, disable.

State machine per account::

    Disabled --begin_setup--> SetupPending --complete_setup(valid code)--> Enabled
    Enabled --disable(valid TOTP code)--> Disabled
    Enabled --regenerate_backup_codes--> Enabled (fresh batch, old codes void)

The pending secret is held in memory only and expires after
``TwoFactorConfig.setup_ttl_ms``; nothing is persisted until the user proves
their authenticator produces valid codes.
"""

from __future__ import annotations

import logging
import re
import secrets
import string
import threading
from dataclasses import dataclass
from datetime import datetime, timezone

from pydantic import BaseModel, Field

from account_guard.clock import Clock, SystemClock
from account_guard.errors import TwoFactorStateError
from account_guard.models import (
    TwoFactorData,
    TwoFactorEnrollment,
    TwoFactorOutcome,
    TwoFactorResult,
    TwoFactorStatus,
)
from account_guard.rate_limiter import RateLimitAction, RateLimiter
from account_guard.storage import RecordStore
from account_guard.totp import CryptographyTotpProvider, TotpProvider, render_qr_data_uri

logger = logging.getLogger(__name__)

KEY_PREFIX = "twoFactor"

_BACKUP_ALPHABET = string.digits + string.ascii_uppercase
_BACKUP_CODE_RE = re.compile(r"^[0-9A-Z]{4}-[0-9A-Z]{4}$")

MSG_INVALID_CODE = "Invalid code. Please try again."
MSG_NOT_ENABLED = "Two-factor authentication is not enabled."


class TwoFactorConfig(BaseModel):
    """Two-factor settings."""

    issuer: str = "FortinXchange"
    digits: int = Field(default=6, ge=6, le=8)
    interval: int = Field(default=30, gt=0)
    valid_window: int = Field(default=1, ge=0)
    backup_code_count: int = Field(default=8, ge=1, le=32)
    setup_ttl_ms: int = Field(default=10 * 60 * 1000, gt=0)


def generate_backup_codes(count: int = 8) -> list[str]:
    """Return *count* distinct ``XXXX-XXXX`` codes drawn from a CSPRNG."""
    codes: list[str] = []
    while len(codes) < count:
        raw = "".join(secrets.choice(_BACKUP_ALPHABET) for _ in range(8))
        code = f"{raw[:4]}-{raw[4:]}"
        if code not in codes:
            codes.append(code)
    return codes


@dataclass
class _PendingSetup:
    secret: str
    expires_at: int


class TwoFactorManager:
    """Manages per-account TOTP secrets and single-use backup codes.

    Every operation that checks a user-supplied code is throttled through the
    ``twoFactor`` rate-limit action keyed by account, so a six-digit code
    cannot be brute-forced. A successful check resets that limiter.

    Args:
        store: Record store for persisted :class:`TwoFactorData`.
        clock: Time source; also drives TOTP validation.
        totp: TOTP implementation (defaults to :class:`CryptographyTotpProvider`).
        rate_limiter: Limiter used for code attempts. Defaults to one sharing
            *store* and *clock*.
        config: Issuer name, code format and backup-code settings.
    """

    def __init__(
        self,
        store: RecordStore | None = None,
        clock: Clock | None = None,
        totp: TotpProvider | None = None,
        rate_limiter: RateLimiter | None = None,
        config: TwoFactorConfig | None = None,
    ) -> None:
        self._store = store or RecordStore()
        self._clock = clock or SystemClock()
        self.config = config or TwoFactorConfig()
        self._totp: TotpProvider = totp or CryptographyTotpProvider(
            digits=self.config.digits,
            interval=self.config.interval,
            valid_window=self.config.valid_window,
        )
        self._rate_limiter = rate_limiter or RateLimiter(self._store, self._clock)
        self._code_re = re.compile(rf"[0-9]{{{self.config.digits}}}")
        self._pending: dict[str, _PendingSetup] = {}
        self._pending_lock = threading.Lock()

    @staticmethod
    def storage_key(account_key: str) -> str:
        return f"{KEY_PREFIX}:{account_key}"

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now_seconds(self) -> int:
        return self._clock.now_ms() // 1000

    def _normalize_code(self, code: str) -> str | None:
        token = "".join(code.split())
        return token if self._code_re.fullmatch(token) else None

    def _invalid_format(self) -> TwoFactorResult:
        return TwoFactorResult(
            outcome=TwoFactorOutcome.INVALID_FORMAT,
            message=f"Invalid code format. Please enter a {self.config.digits}-digit code.",
        )

    def _throttle(self, account_key: str) -> TwoFactorResult | None:
        result = self._rate_limiter.check_rate_limit(RateLimitAction.TWO_FACTOR, account_key)
        if not result.is_limited:
            return None
        logger.warning("Two-factor attempt rate limited for account=%s", account_key)
        return TwoFactorResult(
            outcome=TwoFactorOutcome.RATE_LIMITED,
            message=f"Too many attempts. Please try again in {result.retry_after} seconds.",
            retry_after=result.retry_after,
        )

    def _load_enabled(self, key: str) -> TwoFactorData | None:
        data = self._store.load(key, TwoFactorData)
        return data if data is not None and data.enabled else None

    def _pending_secret(self, account_key: str) -> str | None:
        with self._pending_lock:
            pending = self._pending.get(account_key)
            if pending is None:
                return None
            if self._clock.now_ms() > pending.expires_at:
                del self._pending[account_key]
                return None
            return pending.secret

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_enabled(self, account_key: str) -> bool:
        return self._load_enabled(self.storage_key(account_key)) is not None

    def status(self, account_key: str) -> TwoFactorStatus:
        data = self._load_enabled(self.storage_key(account_key))
        if data is None:
            return TwoFactorStatus(enabled=False, setup_pending=self._pending_secret(account_key) is not None)
        return TwoFactorStatus(
            enabled=True,
            verified_at=data.verified_at,
            backup_codes_total=len(data.backup_codes),
            backup_codes_remaining=data.remaining_backup_codes,
        )

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def begin_setup(self, account_key: str, label: str | None = None) -> TwoFactorEnrollment:
        """Generate a fresh secret and hold it as a pending setup.

        Calling again before completion replaces the pending secret.

        Args:
            account_key: Account the secret belongs to.
            label: Account name shown in the authenticator app (defaults to
                *account_key*), typically the user's email.

        Raises:
            TwoFactorStateError: If 2FA is already enabled for the account.
        """
        if not account_key:
            raise TwoFactorStateError("An account key is required to set up two-factor authentication")
        if self.is_enabled(account_key):
            raise TwoFactorStateError(f"Two-factor authentication is already enabled for {account_key}")

        secret = self._totp.generate_secret()
        uri = self._totp.provisioning_uri(secret, label or account_key, self.config.issuer)
        now = self._clock.now_ms()
        expires_at = now + self.config.setup_ttl_ms
        with self._pending_lock:
            # Drop setups abandoned by other accounts
            for key in [k for k, p in self._pending.items() if now > p.expires_at]:
                del self._pending[key]
            self._pending[account_key] = _PendingSetup(secret=secret, expires_at=expires_at)

        logger.info("Two-factor setup started for account=%s", account_key)
        return TwoFactorEnrollment(
            secret=secret,
            provisioning_uri=uri,
            qr_code=render_qr_data_uri(uri),
            expires_at=expires_at,
        )

    def cancel_setup(self, account_key: str) -> None:
        with self._pending_lock:
            self._pending.pop(account_key, None)

    def complete_setup(self, account_key: str, code: str) -> TwoFactorResult:
        """Enable 2FA if *code* is valid for the pending secret.

        On success the result carries the freshly issued backup codes.
        """
        secret = self._pending_secret(account_key)
        if secret is None:
            return TwoFactorResult(
                outcome=TwoFactorOutcome.NO_PENDING_SETUP,
                message="No two-factor setup in progress. Please start again.",
            )
        token = self._normalize_code(code)
        if token is None:
            return self._invalid_format()

        key = self.storage_key(account_key)
        with self._store.locked(key):
            if self._load_enabled(key) is not None:
                raise TwoFactorStateError(f"Two-factor authentication is already enabled for {account_key}")
            limited = self._throttle(account_key)
            if limited is not None:
                return limited
            if not self._totp.verify(token, secret, self._now_seconds()):
                return TwoFactorResult(outcome=TwoFactorOutcome.INVALID_CODE, message=MSG_INVALID_CODE)

            backup_codes = generate_backup_codes(self.config.backup_code_count)
            verified_at = datetime.fromtimestamp(self._clock.now_ms() / 1000, tz=timezone.utc).isoformat()
            self._store.save(
                key,
                TwoFactorData(
                    enabled=True,
                    secret=secret,
                    verified_at=verified_at,
                    backup_codes=backup_codes,
                    used_backup_codes=[],
                ),
            )

        self.cancel_setup(account_key)
        self._rate_limiter.reset_rate_limit(RateLimitAction.TWO_FACTOR, account_key)
        logger.info("Two-factor authentication enabled for account=%s", account_key)
        return TwoFactorResult(
            outcome=TwoFactorOutcome.OK,
            message="Two-factor authentication enabled.",
            backup_codes=list(backup_codes),
        )

    # ------------------------------------------------------------------
    # Enabled-state operations
    # ------------------------------------------------------------------

    def verify(self, account_key: str, code: str) -> TwoFactorResult:
        """Check a live TOTP code for login. Backup codes are not accepted here."""
        key = self.storage_key(account_key)
        data = self._load_enabled(key)
        if data is None:
            return TwoFactorResult(outcome=TwoFactorOutcome.NOT_ENABLED, message=MSG_NOT_ENABLED)
        token = self._normalize_code(code)
        if token is None:
            return self._invalid_format()
        limited = self._throttle(account_key)
        if limited is not None:
            return limited
        if not self._totp.verify(token, data.secret, self._now_seconds()):
            return TwoFactorResult(outcome=TwoFactorOutcome.INVALID_CODE, message=MSG_INVALID_CODE)
        self._rate_limiter.reset_rate_limit(RateLimitAction.TWO_FACTOR, account_key)
        return TwoFactorResult(outcome=TwoFactorOutcome.OK)

    def verify_code(self, account_key: str, code: str) -> bool:
        """Login gate: ``True`` if the code is valid or the account has no 2FA."""
        result = self.verify(account_key, code)
        return result.outcome in (TwoFactorOutcome.OK, TwoFactorOutcome.NOT_ENABLED)

    def redeem_backup_code(self, account_key: str, code: str) -> TwoFactorResult:
        """Accept an unused backup code once, marking it used in the same write."""
        key = self.storage_key(account_key)
        with self._store.locked(key):
            data = self._load_enabled(key)
            if data is None:
                return TwoFactorResult(outcome=TwoFactorOutcome.NOT_ENABLED, message=MSG_NOT_ENABLED)
            normalized = code.strip().upper()
            if not _BACKUP_CODE_RE.match(normalized):
                return TwoFactorResult(
                    outcome=TwoFactorOutcome.INVALID_FORMAT,
                    message="Invalid backup code format. Expected XXXX-XXXX.",
                )
            limited = self._throttle(account_key)
            if limited is not None:
                return limited
            if normalized not in data.backup_codes or normalized in data.used_backup_codes:
                return TwoFactorResult(
                    outcome=TwoFactorOutcome.INVALID_CODE,
                    message="Invalid or already used backup code.",
                )
            data.used_backup_codes.append(normalized)
            self._store.save(key, data)

        self._rate_limiter.reset_rate_limit(RateLimitAction.TWO_FACTOR, account_key)
        logger.info(
            "Backup code redeemed for account=%s (%d remaining)",
            account_key,
            data.remaining_backup_codes,
        )
        return TwoFactorResult(outcome=TwoFactorOutcome.OK)

    def regenerate_backup_codes(self, account_key: str) -> TwoFactorResult:
        """Issue a fresh batch of backup codes; every earlier code stops working."""
        key = self.storage_key(account_key)
        with self._store.locked(key):
            data = self._load_enabled(key)
            if data is None:
                return TwoFactorResult(outcome=TwoFactorOutcome.NOT_ENABLED, message=MSG_NOT_ENABLED)
            data.backup_codes = generate_backup_codes(self.config.backup_code_count)
            data.used_backup_codes = []
            self._store.save(key, data)

        logger.info("Backup codes regenerated for account=%s", account_key)
        return TwoFactorResult(
            outcome=TwoFactorOutcome.OK,
            message="New backup codes issued.",
            backup_codes=list(data.backup_codes),
        )

    def disable(self, account_key: str, code: str) -> TwoFactorResult:
        """Remove all 2FA state after checking a live TOTP code (backup codes are refused)."""
        key = self.storage_key(account_key)
        with self._store.locked(key):
            data = self._load_enabled(key)
            if data is None:
                return TwoFactorResult(outcome=TwoFactorOutcome.NOT_ENABLED, message=MSG_NOT_ENABLED)
            token = self._normalize_code(code)
            if token is None:
                return self._invalid_format()
            limited = self._throttle(account_key)
            if limited is not None:
                return limited
            if not self._totp.verify(token, data.secret, self._now_seconds()):
                return TwoFactorResult(outcome=TwoFactorOutcome.INVALID_CODE, message=MSG_INVALID_CODE)
            self._store.delete(key)

        self._rate_limiter.reset_rate_limit(RateLimitAction.TWO_FACTOR, account_key)
        logger.info("Two-factor authentication disabled for account=%s", account_key)
        return TwoFactorResult(outcome=TwoFactorOutcome.OK, message="Two-factor authentication disabled.")
