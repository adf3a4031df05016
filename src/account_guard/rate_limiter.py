"""Sliding-window rate limiter with a block penalty, keyed by ``(action, identifier)``."""

from __future__ import annotations

import functools
import inspect
import logging
import math
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, TypeVar

from pydantic import BaseModel, Field

from account_guard.clock import Clock, SystemClock
from account_guard.errors import RateLimitExceededError
from account_guard.models import RateLimitResult, RateLimitState, RateLimitStatus
from account_guard.storage import RecordStore

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

KEY_PREFIX = "rateLimit"
DEFAULT_IDENTIFIER = "default"


class RateLimitAction(str, Enum):
    """Actions with their own rate-limit policy."""

    LOGIN = "login"
    SIGNUP = "signup"
    PASSWORD_RESET = "passwordReset"
    TRADE = "trade"
    WITHDRAW = "withdraw"
    API = "api"
    TWO_FACTOR = "twoFactor"

    @classmethod
    def resolve(cls, action: RateLimitAction | str) -> RateLimitAction:
        """Map an action name to a member; unknown names fall back to :attr:`API`."""
        if isinstance(action, cls):
            return action
        try:
            return cls(action)
        except ValueError:
            logger.debug("Unknown rate-limit action %r, using the default policy", action)
            return cls.API


class RateLimitConfig(BaseModel):
    """Policy for one action: *max_requests* per *window_ms*, then a block of *block_duration_ms*."""

    max_requests: int = Field(gt=0)
    window_ms: int = Field(gt=0)
    block_duration_ms: int = Field(gt=0)


DEFAULT_RATE_LIMITS: dict[RateLimitAction, RateLimitConfig] = {
    # 5 per minute, block 5 min
    RateLimitAction.LOGIN: RateLimitConfig(max_requests=5, window_ms=60_000, block_duration_ms=300_000),
    # 3 per minute, block 10 min
    RateLimitAction.SIGNUP: RateLimitConfig(max_requests=3, window_ms=60_000, block_duration_ms=600_000),
    # 3 per 5 min, block 15 min
    RateLimitAction.PASSWORD_RESET: RateLimitConfig(max_requests=3, window_ms=300_000, block_duration_ms=900_000),
    # 30 per minute, block 1 min
    RateLimitAction.TRADE: RateLimitConfig(max_requests=30, window_ms=60_000, block_duration_ms=60_000),
    # 5 per 5 min, block 10 min
    RateLimitAction.WITHDRAW: RateLimitConfig(max_requests=5, window_ms=300_000, block_duration_ms=600_000),
    # 100 per minute, block 1 min
    RateLimitAction.API: RateLimitConfig(max_requests=100, window_ms=60_000, block_duration_ms=60_000),
    # 5 per 5 min, block 15 min
    RateLimitAction.TWO_FACTOR: RateLimitConfig(max_requests=5, window_ms=300_000, block_duration_ms=900_000),
}


def _ceil_seconds(ms: int) -> int:
    return math.ceil(ms / 1000)


class RateLimiter:
    """Sliding-window request limiter.

    Each ``action:identifier`` key keeps the timestamps of accepted requests.
    Once a window's quota is used up the key is blocked for the action's
    block duration, and the block holds even after the old requests age out
    of the window. Expiry is evaluated lazily on each call.

    Args:
        store: Record store holding the per-key state.
        clock: Time source (defaults to wall-clock time).
        configs: Per-action overrides merged over :data:`DEFAULT_RATE_LIMITS`.
        enabled: When ``False`` every check passes and nothing is recorded.
    """

    def __init__(
        self,
        store: RecordStore | None = None,
        clock: Clock | None = None,
        configs: Mapping[RateLimitAction, RateLimitConfig] | None = None,
        *,
        enabled: bool = True,
    ) -> None:
        self._store = store or RecordStore()
        self._clock = clock or SystemClock()
        self._configs: dict[RateLimitAction, RateLimitConfig] = {**DEFAULT_RATE_LIMITS, **(configs or {})}
        self.enabled = enabled

    def config_for(self, action: RateLimitAction | str) -> RateLimitConfig:
        return self._configs[RateLimitAction.resolve(action)]

    @staticmethod
    def storage_key(action: RateLimitAction | str, identifier: str | None = None) -> str:
        resolved = RateLimitAction.resolve(action)
        return f"{KEY_PREFIX}:{resolved.value}:{DEFAULT_IDENTIFIER if identifier is None else identifier}"

    def check_rate_limit(self, action: RateLimitAction | str, identifier: str | None = None) -> RateLimitResult:
        """Record a request for *identifier* unless it is limited.

        Args:
            action: Action name or member; unknown names use the ``api`` policy.
            identifier: Stable per-subject key (user id, IP). ``None`` maps to a
                shared default bucket; an empty string is never limited.

        Returns:
            A :class:`RateLimitResult`. Blocked calls are not recorded as requests.
        """
        config = self.config_for(action)
        if not self.enabled or identifier == "":
            return RateLimitResult(is_limited=False, remaining_requests=config.max_requests)

        key = self.storage_key(action, identifier)
        with self._store.locked(key):
            now = self._clock.now_ms()
            state = self._store.load(key, RateLimitState) or RateLimitState()

            if state.blocked_until > now:
                return RateLimitResult(is_limited=True, retry_after=_ceil_seconds(state.blocked_until - now))

            state.requests = [t for t in state.requests if now - t < config.window_ms]

            if len(state.requests) >= config.max_requests:
                state.blocked_until = now + config.block_duration_ms
                self._store.save(key, state)
                logger.warning(
                    "Rate limit exceeded for key=%s; blocked for %d ms",
                    key,
                    config.block_duration_ms,
                )
                return RateLimitResult(is_limited=True, retry_after=_ceil_seconds(config.block_duration_ms))

            state.requests.append(now)
            self._store.save(key, state)
            return RateLimitResult(is_limited=False, remaining_requests=config.max_requests - len(state.requests))

    def reset_rate_limit(self, action: RateLimitAction | str, identifier: str | None = None) -> None:
        """Delete all state for the key (administrative override or completed flow)."""
        key = self.storage_key(action, identifier)
        with self._store.locked(key):
            self._store.delete(key)
        logger.debug("Rate limit reset for key=%s", key)

    def get_rate_limit_status(self, action: RateLimitAction | str, identifier: str | None = None) -> RateLimitStatus:
        """Return the current usage for the key without recording a request."""
        config = self.config_for(action)
        state = None
        if identifier != "":
            state = self._store.load(self.storage_key(action, identifier), RateLimitState)
        if state is None:
            return RateLimitStatus(
                requests_used=0,
                max_requests=config.max_requests,
                window_ms=config.window_ms,
                is_blocked=False,
            )

        now = self._clock.now_ms()
        blocked = state.blocked_until > now
        return RateLimitStatus(
            requests_used=sum(1 for t in state.requests if now - t < config.window_ms),
            max_requests=config.max_requests,
            window_ms=config.window_ms,
            is_blocked=blocked,
            blocked_until=state.blocked_until if blocked else None,
        )

    def limit(
        self,
        action: RateLimitAction | str,
        get_identifier: Callable[..., str] | None = None,
    ) -> Callable[[F], F]:
        """Decorate a sync or async callable so each call passes through :meth:`check_rate_limit`.

        Args:
            action: The action whose policy applies.
            get_identifier: Receives the wrapped call's arguments and returns the
                identifier. Without it all calls share the default bucket.

        Raises:
            RateLimitExceededError: From the wrapped callable when limited.
        """

        def _enforce(args: tuple[Any, ...], kwargs: dict[str, Any]) -> None:
            identifier = get_identifier(*args, **kwargs) if get_identifier else None
            result = self.check_rate_limit(action, identifier)
            if result.is_limited:
                retry_after = result.retry_after or 60
                raise RateLimitExceededError(
                    f"Too many requests. Please try again in {retry_after} seconds.",
                    retry_after,
                )

        def decorator(fn: F) -> F:
            if inspect.iscoroutinefunction(fn):

                @functools.wraps(fn)
                async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                    _enforce(args, kwargs)
                    return await fn(*args, **kwargs)

                return async_wrapper  # type: ignore[return-value]

            @functools.wraps(fn)
            def wrapper(*args: Any, **kwargs: Any) -> Any:
                _enforce(args, kwargs)
                return fn(*args, **kwargs)

            return wrapper  # type: ignore[return-value]

        return decorator
