from roombook.db.models.booking import Booking, BookingSource, BookingStatus
from roombook.db.models.booking_activity import BookingAction, BookingActivity
from roombook.db.models.deleted_google_event import DeletedGoogleEvent
from roombook.db.models.location import Location
from roombook.db.models.room import Room, RoomStatus
from roombook.db.models.user import User, UserStatus

__all__ = [
    "Location",
    "Room",
    "RoomStatus",
    "User",
    "UserStatus",
    "Booking",
    "BookingStatus",
    "BookingSource",
    "BookingActivity",
    "BookingAction",
    "DeletedGoogleEvent",
]
