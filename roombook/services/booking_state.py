from roombook.core.exceptions import InvalidStateError
from roombook.db.models import Booking, BookingStatus

TERMINAL_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.ENDED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
)

# Sole authority on lifecycle legality. Administrative overrides bypass it explicitly.
ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.SCHEDULED: frozenset(
        {BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
    ),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.ENDED}),
    BookingStatus.ENDED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.NO_SHOW: frozenset(),
}


def status_of(booking: Booking) -> BookingStatus:
    return BookingStatus(booking.status)


def is_terminal(status: BookingStatus | str) -> bool:
    return BookingStatus(status) in TERMINAL_STATUSES


def can_transition(current: BookingStatus | str, target: BookingStatus | str) -> bool:
    return BookingStatus(target) in ALLOWED_TRANSITIONS[BookingStatus(current)]


def ensure_transition(booking: Booking, target: BookingStatus) -> None:
    current = status_of(booking)
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Cannot move booking from {current.value} to {target.value}",
            detail={"booking_id": booking.id, "status": current.value, "requested": target.value},
        )


def apply_transition(booking: Booking, target: BookingStatus, *, force: bool = False) -> None:
    """Set ``booking.status`` to ``target``.

    Entering a terminal state revokes any outstanding action token so an
    emailed link can no longer act on the booking.
    """
    if not force:
        ensure_transition(booking, target)
    booking.status = target.value
    if target in TERMINAL_STATUSES:
        booking.action_token = None
        booking.action_token_issued_at = None
