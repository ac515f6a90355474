from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from roombook.core.exceptions import ConflictError
from roombook.db.base import Base
from roombook.db.models import Booking, BookingStatus, Location, Room
from roombook.schemas.booking import BookingCreateRequest
from roombook.services.booking_service import create_booking

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


@pytest.mark.concurrent
def test_two_parallel_booking_attempts_only_one_succeeds(tmp_path):
    db_file = tmp_path / "race.db"
    engine = create_engine(f"sqlite+pysqlite:///{db_file}", connect_args={"check_same_thread": False})
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)

    seed_session = SessionLocal()
    location = Location(name="Race HQ", timezone="UTC")
    seed_session.add(location)
    seed_session.flush()
    room = Room(location_id=location.id, name="Sprint", capacity=4)
    seed_session.add(room)
    seed_session.commit()
    room_id = room.id
    seed_session.close()

    def attempt(index: int) -> str:
        session = SessionLocal()
        payload = BookingCreateRequest(
            room_id=room_id,
            title=f"Standup {index}",
            start_time=NOW + timedelta(hours=1),
            end_time=NOW + timedelta(hours=2),
            organizer_email=f"racer{index}@example.com",
        )
        try:
            create_booking(session, payload, now=NOW)
            return "created"
        except ConflictError:
            return "conflict"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(attempt, range(2)))

    assert sorted(results) == ["conflict", "created"]

    check = SessionLocal()
    bookings = check.query(Booking).all()
    check.close()
    engine.dispose()

    assert len(bookings) == 1
    assert bookings[0].status == BookingStatus.SCHEDULED.value


@pytest.mark.concurrent
def test_adjacent_parallel_bookings_both_succeed(tmp_path):
    db_file = tmp_path / "adjacent.db"
    engine = create_engine(f"sqlite+pysqlite:///{db_file}", connect_args={"check_same_thread": False})
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)

    seed_session = SessionLocal()
    location = Location(name="Race HQ", timezone="UTC")
    seed_session.add(location)
    seed_session.flush()
    room = Room(location_id=location.id, name="Relay", capacity=4)
    seed_session.add(room)
    seed_session.commit()
    room_id = room.id
    seed_session.close()

    def attempt(index: int) -> str:
        session = SessionLocal()
        start = NOW + timedelta(hours=1 + index)
        payload = BookingCreateRequest(
            room_id=room_id,
            title=f"Block {index}",
            start_time=start,
            end_time=start + timedelta(hours=1),
        )
        try:
            create_booking(session, payload, now=NOW)
            return "created"
        except ConflictError:
            return "conflict"
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=2) as pool:
        results = list(pool.map(attempt, range(2)))

    engine.dispose()
    assert results == ["created", "created"]
