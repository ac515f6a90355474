import os
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker

from roombook.core.exceptions import ConflictError
from roombook.db.base import Base
from roombook.db.models import Booking, BookingStatus, Location, Room
from roombook.schemas.booking import BookingCreateRequest
from roombook.services.booking_service import create_booking
from roombook.services.conflicts import LOCK_CONFLICT_DETAIL

TEST_POSTGRES_DATABASE_URL = os.getenv("TEST_POSTGRES_DATABASE_URL")


@pytest.fixture(scope="module")
def postgres_session_factory():
    if not TEST_POSTGRES_DATABASE_URL:
        pytest.skip("TEST_POSTGRES_DATABASE_URL is not set")

    engine = create_engine(TEST_POSTGRES_DATABASE_URL, pool_pre_ping=True)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.mark.postgres
def test_postgres_room_lock_conflict_then_success(postgres_session_factory):
    seed_session = postgres_session_factory()
    location = Location(name="PG HQ", timezone="UTC")
    seed_session.add(location)
    seed_session.flush()
    room = Room(location_id=location.id, name="PG Room", capacity=6)
    seed_session.add(room)
    seed_session.commit()
    room_id = room.id
    seed_session.close()

    start = datetime.now(UTC) + timedelta(hours=1)
    payload = BookingCreateRequest(
        room_id=room_id,
        title="Locked out",
        start_time=start,
        end_time=start + timedelta(hours=1),
    )

    lock_holder = postgres_session_factory()
    try:
        locked_room = lock_holder.scalar(select(Room).where(Room.id == room_id).with_for_update())
        assert locked_room is not None

        contender = postgres_session_factory()
        try:
            with pytest.raises(ConflictError) as exc_info:
                create_booking(contender, payload)
            assert exc_info.value.message == LOCK_CONFLICT_DETAIL
        finally:
            contender.close()
    finally:
        lock_holder.rollback()
        lock_holder.close()

    success_session = postgres_session_factory()
    booking = create_booking(success_session, payload)
    status = booking.status
    success_session.close()

    assert status == BookingStatus.SCHEDULED.value

    check_session = postgres_session_factory()
    total_bookings = check_session.query(Booking).count()
    check_session.close()

    assert total_bookings == 1
