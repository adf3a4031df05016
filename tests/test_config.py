"""Tests for GuardConfig loading."""

import json

import pytest
from pydantic import ValidationError

from account_guard.config import CONFIG_ENV_VAR, GuardConfig
from account_guard.rate_limiter import RateLimitAction


def test_defaults():
    cfg = GuardConfig()
    assert cfg.store_path is None
    assert cfg.rate_limiting_enabled is True
    assert cfg.rate_limits == {}
    assert cfg.lockout.max_attempts == 4
    assert cfg.lockout.lockout_duration_ms == 86_400_000
    assert cfg.two_factor.issuer == "FortinXchange"
    assert cfg.two_factor.backup_code_count == 8


def test_from_file(tmp_path):
    path = tmp_path / "guard.json"
    path.write_text(
        json.dumps(
            {
                "store_path": "/var/lib/guard/store.json",
                "rate_limits": {"withdraw": {"max_requests": 2, "window_ms": 1000, "block_duration_ms": 5000}},
                "lockout": {"max_attempts": 6},
                "two_factor": {"issuer": "Acme"},
            }
        )
    )
    cfg = GuardConfig.from_file(path)

    assert cfg.store_path == "/var/lib/guard/store.json"
    assert cfg.rate_limits[RateLimitAction.WITHDRAW].max_requests == 2
    assert cfg.lockout.max_attempts == 6
    assert cfg.lockout.lockout_duration_ms == 86_400_000
    assert cfg.two_factor.issuer == "Acme"


def test_from_missing_file():
    cfg = GuardConfig.from_file("/nonexistent/guard.json")
    assert cfg == GuardConfig()


def test_env_var_selects_file(tmp_path, monkeypatch):
    path = tmp_path / "env-guard.json"
    path.write_text(json.dumps({"rate_limiting_enabled": False}))
    monkeypatch.setenv(CONFIG_ENV_VAR, str(path))
    assert GuardConfig.from_file().rate_limiting_enabled is False


def test_default_location(tmp_path, monkeypatch):
    (tmp_path / ".account_guard").mkdir()
    (tmp_path / ".account_guard" / "guard.json").write_text(json.dumps({"store_path": "s.json"}))
    monkeypatch.chdir(tmp_path)
    assert GuardConfig.from_file().store_path == "s.json"


def test_unknown_keys_rejected():
    with pytest.raises(ValidationError):
        GuardConfig.model_validate({"rate_limit": {}})


def test_unknown_action_rejected():
    with pytest.raises(ValidationError):
        GuardConfig.model_validate(
            {"rate_limits": {"teleport": {"max_requests": 1, "window_ms": 1, "block_duration_ms": 1}}}
        )


@pytest.mark.parametrize("field", ["max_requests", "window_ms", "block_duration_ms"])
def test_rate_limit_values_must_be_positive(field):
    policy = {"max_requests": 5, "window_ms": 1000, "block_duration_ms": 1000, field: 0}
    with pytest.raises(ValidationError):
        GuardConfig.model_validate({"rate_limits": {"login": policy}})


def test_backup_code_count_bounds():
    with pytest.raises(ValidationError):
        GuardConfig.model_validate({"two_factor": {"backup_code_count": 0}})
