"""Tests that all public API symbols are importable."""


def test_account_guard_imports():
    import account_guard

    assert account_guard is not None


def test_public_api_exports():
    from account_guard import (
        AccountGuard,
        CryptographyTotpProvider,
        GuardConfig,
        LoginAttemptTracker,
        RateLimiter,
        RecordStore,
        TwoFactorManager,
        create_security_router,
    )

    assert all(
        [
            AccountGuard,
            CryptographyTotpProvider,
            GuardConfig,
            LoginAttemptTracker,
            RateLimiter,
            RecordStore,
            TwoFactorManager,
            create_security_router,
        ]
    )


def test_all_is_consistent():
    import account_guard

    for name in account_guard.__all__:
        assert hasattr(account_guard, name), name
