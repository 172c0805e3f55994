"""Shared fixtures for the LogiSync test suite."""

from datetime import datetime, timedelta, timezone

import pytest

from logisync.core.auth.argon2_auth import Argon2Hasher
from logisync.core.auth.guard import CredentialGuard
from logisync.core.auth.services import build_services
from logisync.core.auth.store import MemoryGuardStore, SQLiteGuardStore
from logisync.core.config import GuardConfig, HashingConfig, PathConfig
from logisync.web.app import create_app


# Argon2id with the smallest useful parameters so the suite stays fast
FAST_HASHING = HashingConfig(
    memory_cost=1024,
    time_cost=1,
    parallelism=1,
    enforce_minimums=False,
)

STRONG_PASSWORD = "Abcdef1@"


class FakeClock:
    """Manually advanced aware-UTC clock."""

    def __init__(self, start=None):
        self.current = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current = self.current + timedelta(**kwargs)
        return self.current


class ManualTimer:
    """threading.Timer stand-in that only fires when told to."""

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.started = False
        self.cancelled = False
        self.daemon = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function()


class ManualTimerFactory:
    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = ManualTimer(interval, function)
        self.timers.append(timer)
        return timer

    @property
    def last(self):
        return self.timers[-1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    return GuardConfig(
        paths=PathConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs"),
        hashing=FAST_HASHING,
    )


@pytest.fixture
def hasher():
    return Argon2Hasher.from_config(FAST_HASHING)


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        store = MemoryGuardStore()
    else:
        store = SQLiteGuardStore(tmp_path / "guard.db")
    yield store
    store.close()


@pytest.fixture
def guard(config, store, hasher, clock):
    return CredentialGuard(config, store, hasher=hasher, clock=clock)


@pytest.fixture
def timer_factory():
    return ManualTimerFactory()


@pytest.fixture
def outbox():
    """Captures (user, token) pairs handed to the reset sender."""
    return []


@pytest.fixture
def verification_outbox():
    """Captures (user, token) pairs handed to the verification sender."""
    return []


@pytest.fixture
def services(config, hasher, clock, timer_factory, outbox, verification_outbox):
    services = build_services(
        config,
        hasher=hasher,
        clock=clock,
        send_reset_token=lambda user, token: outbox.append((user, token)),
        send_verification_token=lambda user, token: verification_outbox.append((user, token)),
        timer_factory=timer_factory,
    )
    yield services
    services.close()


@pytest.fixture
def flows(services):
    return services.flows


@pytest.fixture
def app(services):
    app = create_app(services=services)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
