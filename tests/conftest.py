from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from checkin_backend.database import AttendanceStore, DatabaseManager, TransitionService
from checkin_backend.live import LiveQueryRouter


class StepClock:
    """Deterministic clock: every call returns a time one step later."""

    def __init__(self, start: datetime = datetime(2026, 3, 1, 9, 0, 0), step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


def seed(store: AttendanceStore) -> AttendanceStore:
    store.insert_community("C1", "Launch")
    store.insert_community("C2", "Meetup")
    store.insert_person("P1", "C1", "Ana", "Lee", company_name="Acme", title="CTO")
    store.insert_person("P2", "C1", "Bruno", "Costa")
    store.insert_person("P3", "C2", "Carla", "Dias", company_name="Globex")
    return store


@pytest.fixture
def db_manager(tmp_path):
    db = DatabaseManager(f"sqlite:///{tmp_path / 'checkin.db'}")
    assert db.initialize()
    yield db
    db.close()


@pytest.fixture
def store(db_manager):
    return AttendanceStore(db_manager)


@pytest.fixture
def seeded_store(store):
    return seed(store)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def service(seeded_store, clock):
    return TransitionService(seeded_store, clock=clock)


@pytest.fixture
def router(seeded_store):
    router = LiveQueryRouter(seeded_store)
    yield router
    router.close()


@pytest.fixture
def events(seeded_store):
    """Every change event the store publishes from now on."""
    received = []
    seeded_store.add_listener(received.append)
    return received
