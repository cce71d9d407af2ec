"""Shared test fixtures."""

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlmodel.pool import StaticPool

import meeting_service.models  # noqa: F401
from meeting_service.core.concurrency import KeyedLocks
from meeting_service.core.database import get_session
from meeting_service.core.errors import TransientError
from meeting_service.main import app
from meeting_service.models.meeting import Meeting, MeetingCreate, Recurrence
from meeting_service.models.registrant import Registrant, RegistrantCreate
from meeting_service.providers.base import ProviderMeeting, ProviderRegistrant, ProviderRegistry
from meeting_service.routes.deps import get_provider_registry
from meeting_service.scheduling.service import MeetingLifecycleService

# Sunday; the first weekly occurrence in these tests is Monday 2030-01-07
NOW = datetime(2030, 1, 6, 12, 0, tzinfo=UTC)
FIRST_MONDAY = datetime(2030, 1, 7, 10, 0, tzinfo=UTC)


class FakeClock:
    """Settable clock passed wherever the code takes ``clock``."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider:
    """Conferencing provider that records calls instead of making them."""

    def __init__(self, platform: str = "Zoom"):
        self.platform = platform
        self.calls: list[tuple] = []
        self.fail_on: set[str] = set()
        self._next_id = 1000

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if name in self.fail_on:
            raise TransientError(f"{self.platform} {name} failed")

    def called(self, name: str) -> list[tuple]:
        return [call for call in self.calls if call[0] == name]

    def create_meeting(self, meeting):
        self._record("create_meeting", meeting.title)
        self._next_id += 1
        return ProviderMeeting(
            platform_meeting_id=str(self._next_id),
            join_url=f"https://example.test/j/{self._next_id}",
        )

    def update_meeting(self, meeting):
        self._record("update_meeting", meeting.platform_meeting_id)

    def delete_meeting(self, meeting, occurrence_id=None):
        self._record("delete_meeting", meeting.platform_meeting_id, occurrence_id)

    def create_registrant(self, meeting, registrant):
        self._record("create_registrant", registrant.email)
        return ProviderRegistrant(
            platform_registrant_id=f"reg-{registrant.email}",
            join_url=f"https://example.test/j/{meeting.platform_meeting_id}?tk={registrant.email}",
        )

    def update_registrant(self, meeting, registrant):
        self._record("update_registrant", registrant.email)
        return ProviderRegistrant(platform_registrant_id=f"reg-{registrant.email}")

    def delete_registrant(self, meeting, registrant):
        self._record("delete_registrant", registrant.email)

    def get_join_link(self, meeting, registrant=None):
        self._record("get_join_link", registrant.email if registrant else None)
        if registrant is not None and registrant.join_url:
            return registrant.join_url
        return meeting.join_url


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple] = []

    def registrant_invited(self, meeting, registrant):
        self.events.append(("invited", registrant.email))

    def invitation_resent(self, meeting, registrant):
        self.events.append(("resent", registrant.email))

    def registrant_removed(self, meeting, registrant):
        self.events.append(("removed", registrant.email))

    def occurrence_cancelled(self, meeting, occurrence_id, registrants):
        self.events.append(("occurrence_cancelled", occurrence_id, len(registrants)))

    def meeting_cancelled(self, meeting, registrants):
        self.events.append(("meeting_cancelled", len(registrants)))


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


@pytest.fixture(name="clock")
def clock_fixture() -> FakeClock:
    return FakeClock()


@pytest.fixture(name="provider")
def provider_fixture() -> FakeProvider:
    return FakeProvider()


@pytest.fixture(name="providers")
def providers_fixture(provider: FakeProvider) -> ProviderRegistry:
    return ProviderRegistry([provider])


@pytest.fixture(name="notifier")
def notifier_fixture() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture(name="service")
def service_fixture(session, providers, notifier, clock) -> MeetingLifecycleService:
    """Lifecycle service on the test database with a fixed clock."""
    return MeetingLifecycleService(
        session, providers, notifier=notifier, key_locks=KeyedLocks(), clock=clock
    )


@pytest.fixture(name="client")
def client_fixture(session: Session, providers: ProviderRegistry):
    """Create a test client with the test database session and fake provider."""

    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    app.dependency_overrides[get_provider_registry] = lambda: providers
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture(name="weekly_meeting")
def weekly_meeting_fixture(service: MeetingLifecycleService) -> Meeting:
    """An unbounded weekly meeting on Mondays at 10:00 UTC."""
    return service.create_meeting(
        MeetingCreate(
            project_uid="project-1",
            title="Weekly Sync",
            start_time=FIRST_MONDAY,
            duration=60,
            recurrence=Recurrence(type=2, weekly_days="2"),
        ),
        caller="organizer",
    )


@pytest.fixture(name="single_meeting")
def single_meeting_fixture(service: MeetingLifecycleService) -> Meeting:
    """A one-off meeting tomorrow at 15:00 UTC."""
    return service.create_meeting(
        MeetingCreate(
            project_uid="project-1",
            title="Kickoff",
            start_time=datetime(2030, 1, 7, 15, 0, tzinfo=UTC),
            duration=30,
        ),
        caller="organizer",
    )


@pytest.fixture(name="alice")
def alice_fixture(service: MeetingLifecycleService, weekly_meeting: Meeting) -> Registrant:
    return service.create_registrant(
        weekly_meeting.uid,
        RegistrantCreate(
            email="Alice@Example.com", username="alice", first_name="Alice", last_name="Liddell"
        ),
    )
