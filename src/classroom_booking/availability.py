from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from aws_lambda_powertools import Logger

from classroom_booking import dal
from classroom_booking.models import Reservation, ReservationStatus

logger = Logger()


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # half-open intervals: touching boundaries do not overlap
    return a_start < b_end and b_start < a_end


def blocking(
    reservations: Iterable[Reservation],
    start: datetime,
    end: datetime,
    exclude_reservation_id: str | None = None,
) -> list[Reservation]:
    """Return the CONFIRMED reservations that collide with ``[start, end)``."""
    return [
        r
        for r in reservations
        if r.status is ReservationStatus.CONFIRMED
        and r.reservation_id != exclude_reservation_id
        and overlaps(r.start_time, r.end_time, start, end)
    ]


def is_available(
    classroom_id: str,
    start: datetime,
    end: datetime,
    exclude_reservation_id: str | None = None,
) -> bool:
    """Whether ``classroom_id`` is free for ``[start, end)``.

    Only CONFIRMED reservations block a window. ``exclude_reservation_id`` lets
    a reservation be re-checked against everything but itself. Callers that
    write based on the answer must hold ``dal.classroom_lock`` for the room.
    """
    candidates = dal.find_overlapping(classroom_id, start, end, exclude_id=exclude_reservation_id)
    clashes = blocking(candidates, start, end, exclude_reservation_id)
    if clashes:
        logger.debug(
            "Window unavailable",
            extra={
                "classroom_id": classroom_id,
                "blocking": [r.reservation_id for r in clashes],
            },
        )
    return not clashes


def is_occupied(reservations: Iterable[Reservation], at: datetime) -> bool:
    """Whether a CONFIRMED reservation strictly contains ``at``.

    A room whose booking ends (or starts) exactly at ``at`` counts as free.
    """
    return any(
        r.status is ReservationStatus.CONFIRMED and r.start_time < at < r.end_time
        for r in reservations
    )


def is_current(reservation: Reservation, at: datetime) -> bool:
    # inclusive on both ends, used for the "happening now" listing
    return reservation.status is ReservationStatus.CONFIRMED and reservation.start_time <= at <= reservation.end_time
