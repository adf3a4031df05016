"""Guard configuration loaded from .account_guard/guard.json."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from account_guard.lockout import LockoutConfig
from account_guard.rate_limiter import RateLimitAction, RateLimitConfig
from account_guard.two_factor import TwoFactorConfig

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "ACCOUNT_GUARD_CONFIG"
DEFAULT_CONFIG_PATH = ".account_guard/guard.json"


class GuardConfig(BaseModel):
    """Top-level account guard configuration.

    Attributes:
        store_path: JSON file used as the durable store. ``None`` keeps all
            state in memory (lost on restart).
        rate_limiting_enabled: Global switch for the rate limiter.
        rate_limits: Per-action overrides; actions not listed keep their
            built-in policy.
        lockout: Failed-login lockout policy.
        two_factor: TOTP and backup-code settings.
    """

    model_config = {"extra": "forbid"}

    store_path: str | None = None
    rate_limiting_enabled: bool = True
    rate_limits: dict[RateLimitAction, RateLimitConfig] = Field(default_factory=dict)
    lockout: LockoutConfig = Field(default_factory=LockoutConfig)
    two_factor: TwoFactorConfig = Field(default_factory=TwoFactorConfig)

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> GuardConfig:
        """Load config from a JSON file, falling back to defaults.

        Without an explicit *path* the ``ACCOUNT_GUARD_CONFIG`` environment
        variable is consulted, then ``.account_guard/guard.json``.
        """
        p = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
        if p.exists():
            data: dict[str, Any] = json.loads(p.read_text(encoding="utf-8"))
            logger.debug("Loaded guard config from %s", p)
            return cls.model_validate(data)
        return cls()
