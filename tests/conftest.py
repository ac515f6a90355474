import sys
from collections import defaultdict
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.append(str(Path(__file__).resolve().parents[1]))

from roombook.api.deps import get_calendar
from roombook.core.exceptions import ExternalSyncError
from roombook.db.base import Base
from roombook.db.models import Booking, BookingSource, BookingStatus, Location, Room, User  # noqa: F401
from roombook.db.session import get_db
from roombook.main import app
from roombook.schemas.calendar import CalendarEvent
from roombook.services.google_sync import reset_sync_state

TEST_DATABASE_URL = "sqlite+pysqlite:///:memory:"
engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Monday; fixed so recurrence and time-window tests are deterministic.
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeCalendarClient:
    def __init__(self) -> None:
        self.events: dict[str, list[dict[str, Any]]] = defaultdict(list)
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.patched: list[tuple[str, str, dict[str, Any]]] = []
        self.deleted: list[tuple[str, str]] = []
        self.list_calls = 0
        self.fail_with: ExternalSyncError | None = None

    def list_events(self, calendar_id: str, time_min: datetime, time_max: datetime) -> list[CalendarEvent]:
        self.list_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        return [CalendarEvent.model_validate(item) for item in self.events[calendar_id]]

    def create_event(self, calendar_id: str, body: dict[str, Any]) -> CalendarEvent:
        if self.fail_with is not None:
            raise self.fail_with
        self.created.append((calendar_id, body))
        return CalendarEvent.model_validate({**body, "id": f"local-evt-{len(self.created)}"})

    def patch_event(self, calendar_id: str, event_id: str, body: dict[str, Any]) -> CalendarEvent:
        if self.fail_with is not None:
            raise self.fail_with
        self.patched.append((calendar_id, event_id, body))
        return CalendarEvent.model_validate({**body, "id": event_id})

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.deleted.append((calendar_id, event_id))


def google_event(
    event_id: str,
    start: datetime,
    end: datetime,
    summary: str = "Planning",
    status: str = "confirmed",
    organizer: str | None = "organizer@example.com",
    private_booking_id: int | None = None,
    attendees: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    event: dict[str, Any] = {
        "id": event_id,
        "status": status,
        "summary": summary,
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
    }
    if organizer:
        event["organizer"] = {"email": organizer}
    if attendees:
        event["attendees"] = attendees
    if private_booking_id is not None:
        event["extendedProperties"] = {"private": {"roombook_booking_id": str(private_booking_id)}}
    return event


def make_booking(
    db: Session,
    room: Room,
    start: datetime,
    end: datetime,
    *,
    status: BookingStatus = BookingStatus.SCHEDULED,
    source: BookingSource = BookingSource.WEB,
    title: str = "Team sync",
    created_at: datetime | None = None,
    **fields: Any,
) -> Booking:
    stamp = created_at or start - timedelta(days=1)
    booking = Booking(
        room_id=room.id,
        title=title,
        start_time=start,
        end_time=end,
        status=status.value,
        source=source.value,
        created_at=stamp,
        updated_at=stamp,
        **fields,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


@pytest.fixture(autouse=True)
def reset_database() -> None:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    reset_sync_state()


@pytest.fixture()
def db() -> Session:
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def location(db: Session) -> Location:
    location = Location(name="HQ", timezone="Europe/Berlin")
    db.add(location)
    db.commit()
    db.refresh(location)
    return location


@pytest.fixture()
def room(db: Session, location: Location) -> Room:
    room = Room(location_id=location.id, name="Aurora", capacity=8, google_calendar_id="aurora@resource.example.com")
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


@pytest.fixture()
def user(db: Session) -> User:
    user = User(email="ada@example.com", name="Ada Lovelace")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture()
def fake_calendar() -> FakeCalendarClient:
    return FakeCalendarClient()


@pytest.fixture()
def client(fake_calendar: FakeCalendarClient) -> TestClient:
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_calendar] = lambda: fake_calendar
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture()
def now() -> datetime:
    return NOW


@pytest.fixture()
def booking_factory(db: Session):
    def factory(room: Room, start: datetime, end: datetime, **kwargs: Any) -> Booking:
        return make_booking(db, room, start, end, **kwargs)

    return factory


@pytest.fixture()
def event_factory():
    return google_event
