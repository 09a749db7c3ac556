# tests/conftest.py

import os
import tempfile
from datetime import datetime, timedelta

# Settings are read at import time, so the test environment must be in place first.
_TEST_DB_DIR = tempfile.mkdtemp(prefix="checkin-tests-")
os.environ["ENV"] = "test"
os.environ["DATABASE_URL_LOCAL"] = f"sqlite:///{_TEST_DB_DIR}/checkin_test.db"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["EVENT_SINK_BACKEND"] = "memory"

import fakeredis
import pytest
from starlette.testclient import TestClient

from checkin_service.main import app
from checkin_service.api import deps
from checkin_service.db.base_class import Base
from checkin_service.db.redis import CacheCircuitBreaker
from checkin_service.db.session import SessionLocal, engine
from checkin_service.services.admission_controller import AdmissionController
from checkin_service.services.cache_facade import CacheFacade
from checkin_service.services.check_in_service import CheckInService
from checkin_service.services.event_sink import InProcessEventSink
from checkin_service.services.lifecycle_scheduler import SessionLifecycleScheduler


class FrozenClock:
    """Callable clock for services; tests move it explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(scope="function", autouse=True)
def setup_test_database():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def fake_redis():
    return fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture(scope="function")
def breaker():
    return CacheCircuitBreaker(threshold=3, reset_timeout=60, enabled=True)


@pytest.fixture(scope="function")
def cache(fake_redis, breaker):
    return CacheFacade(client=fake_redis, breaker=breaker)


@pytest.fixture(scope="function")
def event_sink():
    return InProcessEventSink()


@pytest.fixture(scope="function")
def clock():
    # Services compare against naive UTC; keep the frozen instant close to real time
    return FrozenClock(datetime.utcnow().replace(microsecond=0))


@pytest.fixture(scope="function")
def admission(cache):
    return AdmissionController(cache)


@pytest.fixture(scope="function")
def lifecycle(cache, event_sink, clock):
    return SessionLifecycleScheduler(
        cache,
        event_sink,
        clock=clock,
        auto_open_minutes_before=10,
        auto_end_enabled=True,
        auto_end_grace_minutes=0,
    )


@pytest.fixture(scope="function")
def check_in_service(cache, admission, event_sink, clock):
    return CheckInService(
        cache, admission, event_sink, clock=clock, late_threshold_minutes=10
    )


# --- Mock Dependencies Setup ---
class MockTokenPayload:
    def __init__(self, sub="staff_123", org_id="org_abc"):
        self.sub = sub
        self.org_id = org_id


def override_get_current_user():
    return MockTokenPayload()


@pytest.fixture(scope="function")
def client(check_in_service, lifecycle, admission, cache):
    """
    TestClient backed by the real SQLite test database and a fake Redis.
    Authentication is mocked.
    """
    app.dependency_overrides[deps.get_current_user] = override_get_current_user
    app.dependency_overrides[deps.get_check_in_service] = lambda: check_in_service
    app.dependency_overrides[deps.get_lifecycle_scheduler] = lambda: lifecycle
    app.dependency_overrides[deps.get_admission_controller] = lambda: admission
    app.dependency_overrides[deps.get_cache_facade] = lambda: cache

    with TestClient(app) as c:
        yield c

    app.dependency_overrides = {}


@pytest.fixture(scope="function")
def anonymous_client(check_in_service):
    """TestClient without the auth override, for checking protected routes."""
    app.dependency_overrides[deps.get_check_in_service] = lambda: check_in_service
    with TestClient(app) as c:
        yield c
    app.dependency_overrides = {}
