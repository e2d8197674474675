import os

# Point the application at SQLite before any app module builds its engine
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DB_SCHEMA"] = ""
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import List

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app import models  # noqa: F401
from app.core.locks import session_locks
from app.crud.classSessionCrud import create_class_session
from app.db.postgresql import Base
from app.models import ClassType, Client, Location, Studio, Teacher
from app.services.notifications import NotificationEvent


class RecordingNotifier:
    """Captures every event instead of delivering it"""

    def __init__(self):
        self.events: List[NotificationEvent] = []

    async def send(self, event: NotificationEvent) -> None:
        self.events.append(event)

    def client_ids(self, kind=None):
        return [e.client_id for e in self.events if kind is None or e.kind == kind]


class FailingNotifier(RecordingNotifier):
    """Fails delivery for the given clients (all clients when none given)"""

    def __init__(self, failing_client_ids=None):
        super().__init__()
        self.failing_client_ids = set(failing_client_ids or [])

    async def send(self, event: NotificationEvent) -> None:
        if not self.failing_client_ids or event.client_id in self.failing_client_ids:
            raise RuntimeError("delivery service unavailable")
        await super().send(event)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}",
        execution_options={"schema_translate_map": {"app": None}},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_locks.reset()
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def base_time():
    """Top of the hour, two days ahead"""
    now = datetime.now(timezone.utc).replace(minute=0, second=0, microsecond=0)
    return now + timedelta(days=2)


@pytest_asyncio.fixture
async def studio_setup(session_factory):
    """
    Two studios with staff, rooms and clients. Written through its own
    session so the returned records stay readable after a test's `db`
    rolls back.
    """
    async with session_factory() as setup_db:
        studio = Studio(name="Harbour Pilates", subdomain="harbour", timezone="UTC")
        other_studio = Studio(name="Uptown Yoga", subdomain="uptown", timezone="UTC")
        setup_db.add_all([studio, other_studio])
        await setup_db.flush()

        location = Location(studio_id=studio.id, name="Studio A")
        second_location = Location(studio_id=studio.id, name="Studio B")
        class_type = ClassType(studio_id=studio.id, name="Reformer", default_duration_min=60, default_capacity=10)
        teacher = Teacher(studio_id=studio.id, full_name="Dana Reyes")
        second_teacher = Teacher(studio_id=studio.id, full_name="Sam Okafor")
        clients = [Client(studio_id=studio.id, full_name=f"Client {i}") for i in range(1, 7)]
        outsider = Client(studio_id=other_studio.id, full_name="Other Studio Client")
        setup_db.add_all([location, second_location, class_type, teacher, second_teacher, outsider, *clients])
        await setup_db.commit()

    return SimpleNamespace(
        studio=studio,
        other_studio=other_studio,
        location=location,
        second_location=second_location,
        class_type=class_type,
        teacher=teacher,
        second_teacher=second_teacher,
        clients=clients,
        outsider=outsider,
    )


@pytest.fixture
def make_session(session_factory, studio_setup):
    """Factory scheduling a session for the default teacher/location, in its own session"""

    async def _make(start, minutes=60, capacity=10, **overrides):
        params = dict(
            studio_id=studio_setup.studio.id,
            class_type_id=studio_setup.class_type.id,
            teacher_id=studio_setup.teacher.id,
            location_id=studio_setup.location.id,
            start_time=start,
            end_time=start + timedelta(minutes=minutes),
            capacity=capacity,
        )
        params.update(overrides)
        async with session_factory() as session_db:
            return await create_class_session(session_db, **params)

    return _make


@pytest.fixture
def failing_notifier():
    """Factory for a notifier that fails delivery to the given clients"""
    return FailingNotifier
