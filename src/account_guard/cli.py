"""account-guard CLI: administrative overrides on the durable guard store."""

from __future__ import annotations

import json
from pathlib import Path

import typer

from account_guard.config import GuardConfig
from account_guard.guard import AccountGuard
from account_guard.rate_limiter import RateLimitAction

app = typer.Typer(name="account-guard", help="Inspect and reset rate limits, login lockouts and 2FA state.")

_CONFIG_OPTION = typer.Option(None, "--config", "-c", help="Path to guard.json.")
_STORE_OPTION = typer.Option(None, "--store", "-s", help="Path to the JSON store (overrides store_path).")


def _load_guard(config_path: Path | None, store_path: Path | None) -> AccountGuard:
    """Build a guard over the durable store, exiting if none is configured."""
    try:
        config = GuardConfig.from_file(config_path)
    except (ValueError, OSError) as exc:
        typer.echo(f"Invalid configuration: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if store_path is not None:
        config = config.model_copy(update={"store_path": str(store_path)})
    if not config.store_path:
        typer.echo("No store configured. Pass --store or set store_path in guard.json.", err=True)
        raise typer.Exit(code=1)
    return AccountGuard(config)


def _parse_action(action: str) -> RateLimitAction:
    try:
        return RateLimitAction(action)
    except ValueError as exc:
        valid = ", ".join(a.value for a in RateLimitAction)
        typer.echo(f"Unknown action '{action}'. Valid actions: {valid}", err=True)
        raise typer.Exit(code=1) from exc


def _echo_json(data: object) -> None:
    typer.echo(json.dumps(data, indent=2))


@app.command("rate-limit-status")
def rate_limit_status(
    action: str = typer.Argument(..., help="Action name, e.g. login or withdraw."),
    identifier: str = typer.Argument(..., help="User id, IP or other subject key."),
    config: Path = _CONFIG_OPTION,
    store: Path = _STORE_OPTION,
) -> None:
    """Show requests used and block state for an action/identifier pair."""
    guard = _load_guard(config, store)
    status = guard.rate_limiter.get_rate_limit_status(_parse_action(action), identifier)
    _echo_json(status.model_dump(mode="json"))


@app.command("reset-rate-limit")
def reset_rate_limit(
    action: str = typer.Argument(..., help="Action name, e.g. login or withdraw."),
    identifier: str = typer.Argument(..., help="User id, IP or other subject key."),
    config: Path = _CONFIG_OPTION,
    store: Path = _STORE_OPTION,
) -> None:
    """Clear the rate-limit window and any block for an action/identifier pair."""
    guard = _load_guard(config, store)
    guard.rate_limiter.reset_rate_limit(_parse_action(action), identifier)
    typer.echo(f"Rate limit reset for {action}:{identifier}")


@app.command("lockout-status")
def lockout_status(
    user_id: str = typer.Argument(..., help="User id to inspect."),
    config: Path = _CONFIG_OPTION,
    store: Path = _STORE_OPTION,
) -> None:
    """Show whether a user is locked out and for how long."""
    guard = _load_guard(config, store)
    tracker = guard.login_attempts
    _echo_json(
        {
            "user_id": user_id,
            "locked_out": tracker.is_locked_out(user_id),
            "remaining_ms": tracker.get_lockout_time_remaining(user_id),
            "attempts_remaining": tracker.attempts_remaining(user_id),
        }
    )


@app.command()
def unlock(
    user_id: str = typer.Argument(..., help="User id to unlock."),
    config: Path = _CONFIG_OPTION,
    store: Path = _STORE_OPTION,
) -> None:
    """Clear failed login attempts, lifting any lockout."""
    guard = _load_guard(config, store)
    guard.login_attempts.clear_attempts(user_id)
    guard.rate_limiter.reset_rate_limit(RateLimitAction.LOGIN, user_id)
    typer.echo(f"Unlocked {user_id}")


@app.command("two-factor-status")
def two_factor_status(
    account: str = typer.Argument(..., help="Account key to inspect."),
    config: Path = _CONFIG_OPTION,
    store: Path = _STORE_OPTION,
) -> None:
    """Show whether 2FA is enabled and how many backup codes remain."""
    guard = _load_guard(config, store)
    _echo_json(guard.two_factor.status(account).model_dump(mode="json"))
