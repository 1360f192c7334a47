import fnmatch
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from tenant_guard.core.config import Settings
from tenant_guard.core.exceptions import StorageUnavailable
from tenant_guard.core.roles import Role
from tenant_guard.db.session import build_engine as build_db_engine
from tenant_guard.db.session import build_session_factory, init_db
from tenant_guard.main import create_app
from tenant_guard.schemas.security import ActorContext, ResourceTarget, ResourceType
from tenant_guard.services.engine import TenantSecurityEngine
from tenant_guard.stores.base import CounterStore, EventStore
from tenant_guard.stores.memory import InMemoryAttemptLog, InMemoryCounterStore, InMemoryEventStore
from tenant_guard.stores.sql import SqlAttemptLog, SqlCounterStore, SqlEventStore


# =====================================
# DOUBLES DE TEST
# =====================================

class FakeClock:
    """Horloge contrôlable (UTC, timezone-aware)"""

    def __init__(self, start: datetime = None):
        self.now = start or datetime(2024, 9, 2, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FailingEventStore(EventStore):
    def append_event(self, event):
        raise StorageUnavailable("event store down", store="event_store")

    def query_events(self, event_filter):
        raise StorageUnavailable("event store down", store="event_store")


class UnreadableEventStore(InMemoryEventStore):
    """Les écritures passent, les lectures échouent"""

    def query_events(self, event_filter):
        raise StorageUnavailable("event store read failure", store="event_store")


class FailingCounterStore(CounterStore):
    def get_entry(self, key):
        raise StorageUnavailable("counter store down", store="counter_store")

    def upsert_entry(self, entry):
        raise StorageUnavailable("counter store down", store="counter_store")

    def delete_entry(self, key):
        raise StorageUnavailable("counter store down", store="counter_store")

    def delete_entries_older_than(self, timestamp):
        raise StorageUnavailable("counter store down", store="counter_store")


class ReadOnlyCounterStore(InMemoryCounterStore):
    """Les lectures passent, les écritures échouent"""

    def upsert_entry(self, entry):
        raise StorageUnavailable("counter store write failure", store="counter_store")


class FakeRedis:
    """Client Redis minimal en mémoire (hashes uniquement, decode_responses=True)"""

    def __init__(self):
        self.hashes = {}
        self.expirations = {}

    def hgetall(self, name):
        return dict(self.hashes.get(name, {}))

    def hget(self, name, field):
        return self.hashes.get(name, {}).get(field)

    def hset(self, name, mapping=None):
        self.hashes.setdefault(name, {}).update({k: str(v) for k, v in mapping.items()})
        return len(mapping)

    def expire(self, name, seconds):
        self.expirations[name] = seconds
        return True

    def delete(self, *names):
        removed = 0
        for name in names:
            if self.hashes.pop(name, None) is not None:
                removed += 1
        return removed

    def scan_iter(self, match=None):
        for name in list(self.hashes):
            if match is None or fnmatch.fnmatch(name, match):
                yield name


# =====================================
# FIXTURES
# =====================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings(_env_file=None, COUNTER_BACKEND="memory")


@pytest.fixture
def event_store():
    return InMemoryEventStore()


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def attempt_log():
    return InMemoryAttemptLog()


@pytest.fixture
def engine(event_store, counter_store, attempt_log, settings, clock):
    return TenantSecurityEngine(event_store, counter_store, attempt_log, settings, clock)


@pytest.fixture
def session_factory(tmp_path):
    db_engine = build_db_engine(f"sqlite:///{tmp_path / 'tenant_guard_test.db'}")
    init_db(bind=db_engine)
    yield build_session_factory(db_engine)
    db_engine.dispose()


@pytest.fixture
def sql_engine(session_factory, settings, clock):
    return TenantSecurityEngine(
        SqlEventStore(session_factory),
        SqlCounterStore(session_factory),
        SqlAttemptLog(session_factory),
        settings,
        clock,
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def client(engine):
    return TestClient(create_app(engine=engine))


# =====================================
# ACTEURS ET CIBLES
# =====================================

def make_actor(
    subject_id="user-1",
    institution_id="inst-a",
    role=Role.TEACHER,
    department_id="dept-y",
    permissions=(),
) -> ActorContext:
    return ActorContext(
        subject_id=subject_id,
        institution_id=institution_id,
        department_id=department_id,
        role=role,
        permissions=frozenset(permissions),
    )


def make_target(
    institution_id="inst-a",
    resource_type=ResourceType.CLASS,
    department_id=None,
    resource_id="res-1",
) -> ResourceTarget:
    return ResourceTarget(
        resource_type=resource_type,
        institution_id=institution_id,
        department_id=department_id,
        resource_id=resource_id,
    )


def actor_headers(
    subject_id="user-1",
    institution_id="inst-a",
    role="teacher",
    department_id=None,
    permissions=None,
) -> dict:
    headers = {
        "X-User-ID": subject_id,
        "X-Institution-ID": institution_id,
        "X-User-Role": role,
    }
    if department_id:
        headers["X-Department-ID"] = department_id
    if permissions:
        headers["X-User-Permissions"] = ",".join(permissions)
    return headers
