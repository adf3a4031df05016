"""FastAPI router factory exposing the account protections over HTTP."""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from account_guard.errors import TwoFactorStateError
from account_guard.guard import AccountGuard
from account_guard.models import (
    RateLimitResult,
    RateLimitStatus,
    TwoFactorEnrollment,
    TwoFactorOutcome,
    TwoFactorResult,
    TwoFactorStatus,
)

logger = logging.getLogger(__name__)

_OUTCOME_STATUS: dict[TwoFactorOutcome, int] = {
    TwoFactorOutcome.OK: 200,
    TwoFactorOutcome.INVALID_FORMAT: 400,
    TwoFactorOutcome.INVALID_CODE: 401,
    TwoFactorOutcome.NOT_ENABLED: 404,
    TwoFactorOutcome.NO_PENDING_SETUP: 404,
    TwoFactorOutcome.RATE_LIMITED: 429,
}


class CodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=64)


class SetupRequest(BaseModel):
    label: str | None = Field(default=None, max_length=256)


class LockoutStatus(BaseModel):
    user_id: str
    locked_out: bool
    remaining_ms: int
    attempts_remaining: int


def _two_factor_response(result: TwoFactorResult) -> JSONResponse:
    headers = {"Retry-After": str(result.retry_after)} if result.retry_after is not None else None
    return JSONResponse(
        status_code=_OUTCOME_STATUS[result.outcome],
        content=result.model_dump(mode="json"),
        headers=headers,
    )


def create_security_router(guard: AccountGuard, *, prefix: str = "/security") -> APIRouter:
    """Create a FastAPI router over an :class:`AccountGuard`.

    Endpoints:

    - ``GET|DELETE /rate-limit/{action}/{identifier}`` and ``POST .../check``
    - ``GET|DELETE /lockout/{user_id}``
    - ``GET /two-factor/{account}``
    - ``POST|DELETE /two-factor/{account}/setup`` and ``POST .../setup/verify``
    - ``POST /two-factor/{account}/verify`` and ``POST .../disable``
    - ``POST /two-factor/{account}/backup-codes`` and ``POST .../backup-codes/redeem``

    The router does no caller authentication of its own. Mount it behind the
    application's auth layer and keep the ``DELETE`` routes for administrators.

    Args:
        guard: The guard whose components back the endpoints.
        prefix: URL prefix for the router (default ``/security``).

    Returns:
        A configured :class:`fastapi.APIRouter`.
    """
    router = APIRouter(prefix=prefix, tags=["security"])

    # -- Rate limiting --------------------------------------------------

    @router.get("/rate-limit/{action}/{identifier}", response_model=RateLimitStatus)
    def rate_limit_status(action: str, identifier: str) -> RateLimitStatus:
        return guard.rate_limiter.get_rate_limit_status(action, identifier)

    @router.post("/rate-limit/{action}/{identifier}/check", response_model=RateLimitResult)
    def rate_limit_check(action: str, identifier: str) -> JSONResponse:
        result = guard.rate_limiter.check_rate_limit(action, identifier)
        if result.is_limited:
            return JSONResponse(
                status_code=429,
                content=result.model_dump(mode="json"),
                headers={"Retry-After": str(result.retry_after)},
            )
        return JSONResponse(content=result.model_dump(mode="json"))

    @router.delete("/rate-limit/{action}/{identifier}", status_code=204)
    def rate_limit_reset(action: str, identifier: str) -> None:
        guard.rate_limiter.reset_rate_limit(action, identifier)
        logger.info("Rate limit reset via API: action=%s identifier=%s", action, identifier)

    # -- Login lockout --------------------------------------------------

    @router.get("/lockout/{user_id}", response_model=LockoutStatus)
    def lockout_status(user_id: str) -> LockoutStatus:
        tracker = guard.login_attempts
        return LockoutStatus(
            user_id=user_id,
            locked_out=tracker.is_locked_out(user_id),
            remaining_ms=tracker.get_lockout_time_remaining(user_id),
            attempts_remaining=tracker.attempts_remaining(user_id),
        )

    @router.delete("/lockout/{user_id}", status_code=204)
    def lockout_clear(user_id: str) -> None:
        guard.login_attempts.clear_attempts(user_id)
        logger.info("Login lockout cleared via API: user_id=%s", user_id)

    # -- Two-factor -----------------------------------------------------

    @router.get("/two-factor/{account}", response_model=TwoFactorStatus)
    def two_factor_status(account: str) -> TwoFactorStatus:
        return guard.two_factor.status(account)

    @router.post("/two-factor/{account}/setup", response_model=TwoFactorEnrollment)
    def two_factor_begin_setup(account: str, body: SetupRequest | None = None) -> TwoFactorEnrollment:
        label = body.label if body is not None else None
        try:
            return guard.two_factor.begin_setup(account, label)
        except TwoFactorStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc

    @router.delete("/two-factor/{account}/setup", status_code=204)
    def two_factor_cancel_setup(account: str) -> None:
        guard.two_factor.cancel_setup(account)

    @router.post("/two-factor/{account}/setup/verify", response_model=TwoFactorResult)
    def two_factor_complete_setup(account: str, body: CodeRequest) -> JSONResponse:
        try:
            result = guard.two_factor.complete_setup(account, body.code)
        except TwoFactorStateError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return _two_factor_response(result)

    @router.post("/two-factor/{account}/verify", response_model=TwoFactorResult)
    def two_factor_verify(account: str, body: CodeRequest) -> JSONResponse:
        return _two_factor_response(guard.two_factor.verify(account, body.code))

    @router.post("/two-factor/{account}/disable", response_model=TwoFactorResult)
    def two_factor_disable(account: str, body: CodeRequest) -> JSONResponse:
        return _two_factor_response(guard.two_factor.disable(account, body.code))

    @router.post("/two-factor/{account}/backup-codes", response_model=TwoFactorResult)
    def two_factor_regenerate_backup_codes(account: str) -> JSONResponse:
        return _two_factor_response(guard.two_factor.regenerate_backup_codes(account))

    @router.post("/two-factor/{account}/backup-codes/redeem", response_model=TwoFactorResult)
    def two_factor_redeem_backup_code(account: str, body: CodeRequest) -> JSONResponse:
        return _two_factor_response(guard.two_factor.redeem_backup_code(account, body.code))

    return router
