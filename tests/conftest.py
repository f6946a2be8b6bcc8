"""Shared test fixtures."""

from datetime import UTC, date, datetime, time

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

from training_schedule.core.database import get_session
from training_schedule.core.dependencies import get_schedule_context
from training_schedule.main import app
from training_schedule.models import Event
from training_schedule.scheduling.orchestrator import ScheduleContext
from training_schedule.scheduling.types import EventDefinition

# Monday; the weekly fixtures start on Wednesday 2024-01-03
TODAY = date(2024, 1, 15)
NOW = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)


@pytest.fixture(name="engine")
def engine_fixture():
    """Create an in-memory SQLite database for testing."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="session")
def session_fixture(engine):
    """Create a new database session for each test."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="context")
def context_fixture() -> ScheduleContext:
    """A fixed clock: Monday 2024-01-15, 09:00 UTC."""
    return ScheduleContext(today=TODAY, now=NOW)


@pytest.fixture(name="client")
def client_fixture(session: Session, context: ScheduleContext):
    """Create a test client with the test database session and clock."""

    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_schedule_context] = lambda: context
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="make_definition")
def make_definition_fixture():
    """Factory for weekly Wednesday definitions with overridable fields."""

    def make(**overrides) -> EventDefinition:
        fields = {
            "id": "evt-1",
            "group_id": "club-1",
            "start_date": "2024-01-03",
            "title": "Training",
            "recurrence": "weekly",
            "audience": ["u1", "u2"],
        }
        fields.update(overrides)
        return EventDefinition.from_raw(**fields)

    return make


@pytest.fixture(name="weekly_event")
def weekly_event_fixture(session: Session) -> Event:
    """A weekly Wednesday training starting 2024-01-03 for two players."""
    event = Event(
        group_id="club-1",
        title="Training",
        start_date=date(2024, 1, 3),
        start_time=time(18, 0),
        recurrence="weekly",
        audience=["u1", "u2"],
    )
    session.add(event)
    session.commit()
    session.refresh(event)
    return event


@pytest.fixture(name="single_event")
def single_event_fixture(session: Session) -> Event:
    """A one-off tournament in the same group on 2024-01-17."""
    event = Event(
        group_id="club-1",
        title="Tournament",
        start_date=date(2024, 1, 17),
        recurrence="none",
        audience=["u1", "u2"],
    )
    session.add(event)
    session.commit()
    session.refresh(event)
    return event
