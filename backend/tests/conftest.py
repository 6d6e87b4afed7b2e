from contextlib import suppress
from datetime import datetime, timedelta
from typing import AsyncIterator, Iterator

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel, create_engine

from stepcounter.core import database as core_database
from stepcounter.core.config import get_settings
from stepcounter.main import create_app
from stepcounter.repositories.daily_steps import DailyStepsRepository
from stepcounter.services import runtime
from stepcounter.services.daily_store import DailyStepStore
from stepcounter.services.sensors import PushSensorSource
from stepcounter.services.runtime import StepCounterService, get_step_service
from stepcounter.services.tracker import SensorBaselineTracker, StepCounterListener


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingListener(StepCounterListener):
    def __init__(self):
        self.updates = []
        self.saved = []
        self.new_days = 0
        self.reboots = 0
        self.errors = []

    def on_steps_updated(self, update):
        self.updates.append(update)

    def on_steps_saved(self, total_steps):
        self.saved.append(total_steps)

    def on_new_day(self):
        self.new_days += 1

    def on_reboot(self):
        self.reboots += 1

    def on_persistence_error(self, error):
        self.errors.append(error)


@pytest.fixture
def engine(tmp_path):
    # Fresh SQLite DB file per test for isolation
    db_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    from stepcounter.models import steps  # noqa: F401
    SQLModel.metadata.create_all(db_engine)
    try:
        yield db_engine
    finally:
        with suppress(Exception):
            db_engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 15, 9, 30))


@pytest.fixture
def repository(engine) -> DailyStepsRepository:
    return DailyStepsRepository(engine)


@pytest.fixture
def store(repository, clock) -> DailyStepStore:
    return DailyStepStore(repository, clock=clock)


@pytest.fixture
def sensor() -> PushSensorSource:
    return PushSensorSource()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def tracker(store, sensor, listener) -> Iterator[SensorBaselineTracker]:
    step_tracker = SensorBaselineTracker(store, sensor_source=sensor)
    step_tracker.add_listener(listener)
    with step_tracker:
        yield step_tracker


@pytest.fixture
def step_service(store, sensor) -> Iterator[StepCounterService]:
    settings = get_settings().model_copy(update={"sensor_access_permitted": True})
    service = StepCounterService(store, sensor, settings)
    service.start()
    try:
        yield service
    finally:
        service.stop()


@pytest.fixture(scope="function")
def test_app(monkeypatch, engine, step_service) -> Iterator[FastAPI]:
    # patch global engine/init_db so startup hooks operate on the test database
    monkeypatch.setattr(core_database, "engine", engine, raising=False)

    def _init_db():
        SQLModel.metadata.create_all(engine)

    monkeypatch.setattr(core_database, "init_db", _init_db, raising=False)
    monkeypatch.setattr(runtime, "_service", step_service, raising=False)

    app = create_app()
    app.dependency_overrides[get_step_service] = lambda: step_service

    try:
        yield app
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
