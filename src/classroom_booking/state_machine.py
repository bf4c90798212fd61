from __future__ import annotations

from classroom_booking.errors import InvalidTransitionError
from classroom_booking.models import ReservationStatus

PENDING = ReservationStatus.PENDING
CONFIRMED = ReservationStatus.CONFIRMED
REJECTED = ReservationStatus.REJECTED
CANCELLED = ReservationStatus.CANCELLED

# current status -> statuses it may move to
TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    PENDING: frozenset({CONFIRMED, REJECTED, CANCELLED}),
    CONFIRMED: frozenset({CANCELLED}),
    REJECTED: frozenset(),
    CANCELLED: frozenset(),
}

TERMINAL = frozenset(s for s, targets in TRANSITIONS.items() if not targets)


def can_transition(current: ReservationStatus, requested: ReservationStatus) -> bool:
    return requested in TRANSITIONS[current]


def check_transition(current: ReservationStatus, requested: ReservationStatus) -> None:
    if not can_transition(current, requested):
        raise InvalidTransitionError(current.value, requested.value)


def is_editable_by_owner(status: ReservationStatus) -> bool:
    return status is PENDING
