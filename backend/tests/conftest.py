"""
Shared fixtures: in-memory SQLite, in-memory key-value store, fake clock.
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from portal_guard import models  # noqa: F401  registers tables
from portal_guard.config.settings import load_settings, reset_settings
from portal_guard.db_base import Base
from portal_guard.security import kv_store, lockout, rate_limit, suspicious


class FakeClock:
    """Settable clock for deterministic window and lockout tests."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    """Defaults, independent of whatever the environment holds."""
    base = load_settings()
    return replace(
        base,
        redis_url=None,
        drip_timezone="UTC",
        enforce_module_permissions=False,
        rate_limit_enabled=True,
        login_policy=replace(base.login_policy, max_attempts=5, window_seconds=15 * 60),
        api_policy=replace(base.api_policy, max_attempts=30, window_seconds=60),
        user_creation_policy=replace(base.user_creation_policy, max_attempts=10, window_seconds=60 * 60),
        sensitive_policy=replace(base.sensitive_policy, max_attempts=3, window_seconds=30 * 60),
        lockout=replace(base.lockout, threshold=10, duration_seconds=30 * 60, warning_margin=3),
        suspicious_ip_ttl_seconds=60 * 60,
    )


@pytest.fixture
def kv(clock):
    return kv_store.InMemoryKeyValueStore(clock=clock)


@pytest.fixture(autouse=True)
def _isolate_singletons():
    """Every test starts with fresh settings, store and guards."""
    reset_settings()
    kv_store.set_kv_store(kv_store.InMemoryKeyValueStore())
    rate_limit.reset_rate_limiter()
    lockout.reset_lockout_guard()
    suspicious.reset_security_guard()
    yield
    reset_settings()
    kv_store.set_kv_store(None)
    rate_limit.reset_rate_limiter()
    lockout.reset_lockout_guard()
    suspicious.reset_security_guard()


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(eng)
    yield eng
    Base.metadata.drop_all(eng)
    eng.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
