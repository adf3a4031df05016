"""Tests for the security router factory."""

import inspect

import pytest
from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.twofactor.totp import TOTP
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from account_guard.guard import AccountGuard
from account_guard.router import create_security_router
from account_guard.totp import decode_secret


def _code(secret: str, clock, offset_steps: int = 0) -> str:
    at = clock.now_ms() // 1000 + offset_steps * 30
    return TOTP(decode_secret(secret), 6, SHA1(), 30).generate(at).decode("ascii")


def _wrong_code(secret: str, clock) -> str:
    valid = {_code(secret, clock, step) for step in (-1, 0, 1)}
    return next(c for c in (f"{d}" * 6 for d in range(10)) if c not in valid)


@pytest.fixture
def guard(backend, clock) -> AccountGuard:
    return AccountGuard(store=backend, clock=clock)


@pytest.fixture
def app(guard: AccountGuard) -> FastAPI:
    app = FastAPI()
    app.include_router(create_security_router(guard))
    return app


@pytest.fixture
async def client(app: FastAPI):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def _enable(client: AsyncClient, clock, account: str = "alice") -> tuple[str, list[str]]:
    resp = await client.post(f"/security/two-factor/{account}/setup", json={"label": f"{account}@example.com"})
    secret = resp.json()["secret"]
    resp = await client.post(f"/security/two-factor/{account}/setup/verify", json={"code": _code(secret, clock)})
    assert resp.status_code == 200
    return secret, resp.json()["backup_codes"]


class TestRateLimitRoutes:
    async def test_check_then_limited(self, client: AsyncClient):
        for remaining in (2, 1, 0):
            resp = await client.post("/security/rate-limit/signup/bob/check")
            assert resp.status_code == 200
            assert resp.json()["remaining_requests"] == remaining

        resp = await client.post("/security/rate-limit/signup/bob/check")
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "600"
        assert resp.json()["is_limited"] is True

    async def test_status(self, client: AsyncClient):
        await client.post("/security/rate-limit/withdraw/bob/check")
        resp = await client.get("/security/rate-limit/withdraw/bob")
        assert resp.status_code == 200
        body = resp.json()
        assert body["requests_used"] == 1
        assert body["max_requests"] == 5
        assert body["window_ms"] == 300_000
        assert body["is_blocked"] is False

    async def test_reset(self, client: AsyncClient, backend):
        await client.post("/security/rate-limit/login/bob/check")
        resp = await client.delete("/security/rate-limit/login/bob")
        assert resp.status_code == 204
        assert backend.get("rateLimit:login:bob") is None

    async def test_custom_prefix(self, guard: AccountGuard):
        app = FastAPI()
        app.include_router(create_security_router(guard, prefix="/admin/guard"))
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as c:
            resp = await c.get("/admin/guard/rate-limit/login/bob")
        assert resp.status_code == 200


class TestLockoutRoutes:
    async def test_status_and_clear(self, client: AsyncClient, guard: AccountGuard):
        for _ in range(4):
            guard.login_attempts.record_failed_attempt("carol")

        resp = await client.get("/security/lockout/carol")
        assert resp.status_code == 200
        body = resp.json()
        assert body["locked_out"] is True
        assert body["remaining_ms"] == 24 * 60 * 60 * 1000
        assert body["attempts_remaining"] == 0

        resp = await client.delete("/security/lockout/carol")
        assert resp.status_code == 204
        resp = await client.get("/security/lockout/carol")
        assert resp.json()["locked_out"] is False
        assert resp.json()["attempts_remaining"] == 4


class TestTwoFactorRoutes:
    async def test_setup_flow(self, client: AsyncClient, clock):
        resp = await client.post("/security/two-factor/alice/setup", json={"label": "alice@example.com"})
        assert resp.status_code == 200
        enrollment = resp.json()
        assert enrollment["provisioning_uri"].startswith("otpauth://totp/")
        assert enrollment["qr_code"].startswith("data:image/svg+xml;base64,")

        status = (await client.get("/security/two-factor/alice")).json()
        assert status == {
            "enabled": False,
            "verified_at": None,
            "backup_codes_total": 0,
            "backup_codes_remaining": 0,
            "setup_pending": True,
        }

        resp = await client.post(
            "/security/two-factor/alice/setup/verify",
            json={"code": _code(enrollment["secret"], clock)},
        )
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "ok"
        assert len(resp.json()["backup_codes"]) == 8

        status = (await client.get("/security/two-factor/alice")).json()
        assert status["enabled"] is True
        assert status["backup_codes_remaining"] == 8

    async def test_setup_without_body(self, client: AsyncClient):
        resp = await client.post("/security/two-factor/alice/setup")
        assert resp.status_code == 200
        assert "alice" in resp.json()["provisioning_uri"]

    async def test_setup_when_enabled_conflicts(self, client: AsyncClient, clock):
        await _enable(client, clock)
        resp = await client.post("/security/two-factor/alice/setup")
        assert resp.status_code == 409

    async def test_cancel_setup(self, client: AsyncClient):
        await client.post("/security/two-factor/alice/setup")
        resp = await client.delete("/security/two-factor/alice/setup")
        assert resp.status_code == 204
        resp = await client.post("/security/two-factor/alice/setup/verify", json={"code": "123456"})
        assert resp.status_code == 404
        assert resp.json()["outcome"] == "no_pending_setup"

    async def test_verify_outcomes(self, client: AsyncClient, clock):
        secret, _ = await _enable(client, clock)

        resp = await client.post("/security/two-factor/alice/verify", json={"code": _code(secret, clock)})
        assert resp.status_code == 200

        resp = await client.post("/security/two-factor/alice/verify", json={"code": "12ab"})
        assert resp.status_code == 400
        assert resp.json()["outcome"] == "invalid_format"

        resp = await client.post("/security/two-factor/alice/verify", json={"code": _wrong_code(secret, clock)})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid code. Please try again."

        resp = await client.post("/security/two-factor/nobody/verify", json={"code": "123456"})
        assert resp.status_code == 404

    async def test_verify_rate_limited(self, client: AsyncClient, clock):
        secret, _ = await _enable(client, clock)
        wrong = _wrong_code(secret, clock)
        for _ in range(5):
            await client.post("/security/two-factor/alice/verify", json={"code": wrong})

        resp = await client.post("/security/two-factor/alice/verify", json={"code": _code(secret, clock)})
        assert resp.status_code == 429
        assert resp.headers["retry-after"] == "900"

    async def test_empty_code_is_rejected_by_validation(self, client: AsyncClient):
        resp = await client.post("/security/two-factor/alice/verify", json={"code": ""})
        assert resp.status_code == 422

    async def test_backup_codes(self, client: AsyncClient, clock):
        _, backup_codes = await _enable(client, clock)

        resp = await client.post("/security/two-factor/alice/backup-codes/redeem", json={"code": backup_codes[0]})
        assert resp.status_code == 200
        resp = await client.post("/security/two-factor/alice/backup-codes/redeem", json={"code": backup_codes[0]})
        assert resp.status_code == 401

        resp = await client.post("/security/two-factor/alice/backup-codes")
        assert resp.status_code == 200
        assert len(resp.json()["backup_codes"]) == 8
        status = (await client.get("/security/two-factor/alice")).json()
        assert status["backup_codes_remaining"] == 8

    async def test_disable(self, client: AsyncClient, clock):
        secret, _ = await _enable(client, clock)
        resp = await client.post("/security/two-factor/alice/disable", json={"code": _code(secret, clock)})
        assert resp.status_code == 200
        status = (await client.get("/security/two-factor/alice")).json()
        assert status["enabled"] is False


def test_handlers_run_in_threadpool(guard: AccountGuard):
    router = create_security_router(guard)
    assert router.routes
    assert not any(inspect.iscoroutinefunction(route.endpoint) for route in router.routes)
