from datetime import datetime

from pydantic import BaseModel

from roombook.services.room_status import RoomUiState


class RoomBookingSummary(BaseModel):
    id: int
    title: str
    host_name: str | None
    start_time: datetime
    end_time: datetime


class RoomStatusResponse(BaseModel):
    room_id: int
    room_name: str
    location_name: str
    capacity: int
    is_occupied: bool
    current_booking: RoomBookingSummary | None
    next_bookings: list[RoomBookingSummary]
    available_until: datetime | None
    ui_state: RoomUiState
