"""AccountGuard: wires the protections over one store and runs the login sequence."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable

from account_guard.clock import Clock, SystemClock
from account_guard.config import GuardConfig
from account_guard.lockout import LoginAttemptTracker
from account_guard.models import LoginResult, LoginStatus, TwoFactorOutcome
from account_guard.rate_limiter import RateLimitAction, RateLimiter
from account_guard.storage import InMemoryKeyValueStore, JsonFileKeyValueStore, KeyValueStore, RecordStore
from account_guard.totp import TotpProvider
from account_guard.two_factor import TwoFactorManager

logger = logging.getLogger(__name__)


def _lockout_message(remaining_ms: int) -> str:
    hours = math.ceil(remaining_ms / 3_600_000)
    return f"This account is temporarily locked. Try again in about {hours} hour(s)."


class AccountGuard:
    """Rate limiter, login lockout and 2FA manager sharing one store and clock.

    The three components stay independent; this class only builds them from a
    :class:`GuardConfig` and sequences them for a login attempt.
    """

    def __init__(
        self,
        config: GuardConfig | None = None,
        store: KeyValueStore | None = None,
        clock: Clock | None = None,
        totp: TotpProvider | None = None,
    ) -> None:
        self.config = config or GuardConfig()
        if store is None:
            if self.config.store_path:
                store = JsonFileKeyValueStore(self.config.store_path)
            else:
                logger.warning(
                    "AccountGuard is using the in-memory store. Lockouts and 2FA state "
                    "will be lost on restart. Set store_path or pass a persistent store."
                )
                store = InMemoryKeyValueStore()
        self.clock: Clock = clock or SystemClock()
        self.records = RecordStore(store)

        self.rate_limiter = RateLimiter(
            self.records,
            self.clock,
            self.config.rate_limits,
            enabled=self.config.rate_limiting_enabled,
        )
        self.login_attempts = LoginAttemptTracker(self.records, self.clock, self.config.lockout)
        self.two_factor = TwoFactorManager(
            self.records,
            self.clock,
            totp=totp,
            rate_limiter=self.rate_limiter,
            config=self.config.two_factor,
        )

    def attempt_login(
        self,
        user_id: str,
        check_credentials: Callable[[], bool],
        *,
        two_factor_code: str | None = None,
        backup_code: str | None = None,
        on_lockout: Callable[[str], None] | None = None,
    ) -> LoginResult:
        """Run one login attempt through lockout, rate limit, credentials and 2FA.

        Args:
            user_id: The account identifier the user typed.
            check_credentials: Performs the real password check; only called when
                the account is neither locked nor rate limited.
            two_factor_code: Live TOTP code, required when the account has 2FA.
            backup_code: Single-use recovery code, accepted instead of a TOTP code.
            on_lockout: Called with *user_id* once, on the failure that locks the
                account (e.g. to send an "account locked" email).

        Returns:
            A :class:`LoginResult`; nothing is raised for rejected logins.
        """
        tracker = self.login_attempts

        if tracker.is_locked_out(user_id):
            remaining = tracker.get_lockout_time_remaining(user_id)
            return LoginResult(
                status=LoginStatus.LOCKED_OUT,
                message=_lockout_message(remaining),
                lockout_remaining_ms=remaining,
            )

        limit = self.rate_limiter.check_rate_limit(RateLimitAction.LOGIN, user_id)
        if limit.is_limited:
            logger.warning("Login rate limited for user_id=%s", user_id)
            return LoginResult(
                status=LoginStatus.RATE_LIMITED,
                message=f"Too many login attempts. Please try again in {limit.retry_after} seconds.",
                retry_after=limit.retry_after,
            )

        if not check_credentials():
            tracker.record_failed_attempt(user_id)
            if tracker.is_locked_out(user_id):
                if on_lockout is not None:
                    on_lockout(user_id)
                return LoginResult(
                    status=LoginStatus.LOCKED_OUT,
                    message="Too many failed attempts. Your account is locked for 24 hours.",
                    lockout_remaining_ms=tracker.get_lockout_time_remaining(user_id),
                    newly_locked=True,
                )
            return LoginResult(
                status=LoginStatus.INVALID_CREDENTIALS,
                message="Invalid User ID or password.",
                attempts_remaining=tracker.attempts_remaining(user_id),
            )

        tracker.clear_attempts(user_id)

        if self.two_factor.is_enabled(user_id):
            if backup_code is not None:
                second = self.two_factor.redeem_backup_code(user_id, backup_code)
            elif two_factor_code is not None:
                second = self.two_factor.verify(user_id, two_factor_code)
            else:
                return LoginResult(
                    status=LoginStatus.TWO_FACTOR_REQUIRED,
                    message="Enter the code from your authenticator app.",
                )
            if second.outcome is TwoFactorOutcome.RATE_LIMITED:
                return LoginResult(
                    status=LoginStatus.RATE_LIMITED,
                    message=second.message,
                    retry_after=second.retry_after,
                )
            if not second.ok:
                return LoginResult(status=LoginStatus.TWO_FACTOR_INVALID, message=second.message)

        self.rate_limiter.reset_rate_limit(RateLimitAction.LOGIN, user_id)
        logger.info("Login succeeded for user_id=%s", user_id)
        return LoginResult(status=LoginStatus.SUCCESS)
