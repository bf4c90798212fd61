"""Reservation use cases.

Each function is one operation performed by an ``Actor``. Writes whose
validity depends on the availability of a classroom run while holding
``dal.classroom_lock`` for that classroom, and re-read the reservation inside
the lock so the check and the write see the same state.
"""
from __future__ import annotations

from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from datetime import UTC, datetime
from operator import attrgetter

from aws_lambda_powertools import Logger

from classroom_booking import availability, dal
from classroom_booking.errors import ConflictError, InvalidInputError, SlotUnavailableError
from classroom_booking.models import (
    Actor,
    Reservation,
    ReservationCreate,
    ReservationFilters,
    ReservationStatus,
    ReservationUpdate,
)
from classroom_booking.policy import Operation, Target, authorize, scope_owner_filter
from classroom_booking.state_machine import TERMINAL, check_transition

logger = Logger()

SORT_FIELDS = frozenset({"start_time", "end_time", "status", "classroom_id", "user_id"})
DEFAULT_SORT = "start_time,asc"


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def validate_window(start: datetime, end: datetime) -> None:
    if as_utc(start) >= as_utc(end):
        raise InvalidInputError("start_time must be before end_time")


def _ensure_available(reservation: Reservation) -> None:
    if not availability.is_available(
        reservation.classroom_id,
        reservation.start_time,
        reservation.end_time,
        exclude_reservation_id=reservation.reservation_id,
    ):
        classroom = dal.get_classroom(reservation.classroom_id)
        logger.warning(
            "Requested window is not available",
            extra={"classroom_id": classroom.classroom_id, "reservation_id": reservation.reservation_id},
        )
        raise SlotUnavailableError(classroom.name, reservation.start_time, reservation.end_time)


@contextmanager
def _locked(reservation_id: str, other_classroom_id: str | None = None) -> Iterator[Reservation]:
    """Lock the reservation's classroom (and ``other_classroom_id``) and yield a fresh copy."""
    classroom_id = dal.get_reservation(reservation_id).classroom_id
    rooms = sorted({classroom_id} | ({other_classroom_id} if other_classroom_id else set()))
    with ExitStack() as stack:
        for room in rooms:
            stack.enter_context(dal.classroom_lock(room))
        current = dal.get_reservation(reservation_id)
        if current.classroom_id != classroom_id:
            raise ConflictError(f"Reservation {reservation_id} was modified concurrently, try again")
        yield current


def create_reservation(payload: ReservationCreate, actor: Actor) -> Reservation:
    validate_window(payload.start_time, payload.end_time)
    owner_id = payload.user_id or actor.user_id
    authorize(Operation.CREATE, actor, Target(owner_id=owner_id))
    if owner_id != actor.user_id:
        dal.get_user(owner_id)
    classroom = dal.get_classroom(payload.classroom_id)

    reservation = Reservation(
        reservation_id=dal.new_id(),
        classroom_id=classroom.classroom_id,
        user_id=owner_id,
        start_time=as_utc(payload.start_time),
        end_time=as_utc(payload.end_time),
        status=ReservationStatus.PENDING,
        purpose=payload.purpose,
    )
    with dal.classroom_lock(classroom.classroom_id):
        _ensure_available(reservation)
        saved = dal.save_reservation(reservation)

    logger.info(
        "Reservation created",
        extra={"reservation_id": saved.reservation_id, "classroom_id": saved.classroom_id, "user_id": owner_id},
    )
    return saved


def get_reservation(reservation_id: str, actor: Actor) -> Reservation:
    reservation = dal.get_reservation(reservation_id)
    authorize(Operation.READ, actor, Target(owner_id=reservation.user_id))
    return reservation


def update_status(reservation_id: str, new_status: ReservationStatus, actor: Actor) -> Reservation:
    with _locked(reservation_id) as current:
        authorize(
            Operation.UPDATE_STATUS,
            actor,
            Target(owner_id=current.user_id, status=current.status, requested_status=new_status),
        )
        check_transition(current.status, new_status)
        updated = current.model_copy(update={"status": new_status})
        if new_status is ReservationStatus.CONFIRMED:
            _ensure_available(updated)
        saved = dal.save_reservation(updated)

    logger.info(
        "Reservation status changed",
        extra={"reservation_id": reservation_id, "from": current.status.value, "to": new_status.value},
    )
    return saved


def update_details(reservation_id: str, payload: ReservationUpdate, actor: Actor) -> Reservation:
    if payload.start_time is not None and payload.end_time is not None:
        validate_window(payload.start_time, payload.end_time)
    if payload.classroom_id is not None:
        dal.get_classroom(payload.classroom_id)

    with _locked(reservation_id, payload.classroom_id) as current:
        authorize(Operation.UPDATE_DETAILS, actor, Target(owner_id=current.user_id, status=current.status))
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        for key in ("start_time", "end_time"):
            if key in changes:
                changes[key] = as_utc(changes[key])

        new_owner = changes.get("user_id")
        if new_owner is not None and new_owner != current.user_id:
            authorize(Operation.CREATE, actor, Target(owner_id=new_owner))
            dal.get_user(new_owner)

        new_status = changes.get("status", current.status)
        if new_status is not current.status:
            authorize(
                Operation.UPDATE_STATUS,
                actor,
                Target(owner_id=current.user_id, status=current.status, requested_status=new_status),
            )
            check_transition(current.status, new_status)

        merged = current.model_copy(update=changes)
        validate_window(merged.start_time, merged.end_time)
        moved = (merged.classroom_id, merged.start_time, merged.end_time) != (
            current.classroom_id,
            current.start_time,
            current.end_time,
        )
        confirming = merged.status is ReservationStatus.CONFIRMED and current.status is not ReservationStatus.CONFIRMED
        if (moved or confirming) and merged.status not in TERMINAL:
            _ensure_available(merged)
        saved = dal.save_reservation(merged)

    logger.info("Reservation updated", extra={"reservation_id": reservation_id, "fields": sorted(changes)})
    return saved


def cancel_reservation(reservation_id: str, actor: Actor) -> Reservation:
    with _locked(reservation_id) as current:
        authorize(Operation.CANCEL, actor, Target(owner_id=current.user_id, status=current.status))
        check_transition(current.status, ReservationStatus.CANCELLED)
        saved = dal.save_reservation(current.model_copy(update={"status": ReservationStatus.CANCELLED}))

    logger.info("Reservation cancelled", extra={"reservation_id": reservation_id, "user_id": actor.user_id})
    return saved


def delete_reservation(reservation_id: str, actor: Actor) -> None:
    reservation = dal.get_reservation(reservation_id)
    authorize(Operation.DELETE, actor, Target(owner_id=reservation.user_id))
    dal.delete_reservation(reservation_id)
    logger.info("Reservation deleted", extra={"reservation_id": reservation_id, "user_id": actor.user_id})


def parse_sort(sort: str | None) -> tuple[str, bool]:
    """``"field,direction"`` -> (field, descending)."""
    field, _, direction = (sort or DEFAULT_SORT).partition(",")
    field = field.strip() or "start_time"
    direction = (direction.strip() or "asc").lower()
    if field not in SORT_FIELDS:
        raise InvalidInputError(f"Cannot sort by {field!r}")
    if direction not in ("asc", "desc"):
        raise InvalidInputError(f"Sort direction must be 'asc' or 'desc', got {direction!r}")
    return field, direction == "desc"


def list_reservations(actor: Actor, filters: ReservationFilters) -> list[Reservation]:
    field, descending = parse_sort(filters.sort)
    owner_id = scope_owner_filter(actor, filters.user_id)

    if filters.classroom_id is not None:
        dal.get_classroom(filters.classroom_id)
        rows = dal.list_reservations_for_classroom(filters.classroom_id)
    elif owner_id is not None:
        if owner_id != actor.user_id:
            dal.get_user(owner_id)
        rows = dal.list_reservations_for_user(owner_id)
    else:
        rows = dal.list_reservations()

    if owner_id is not None:
        rows = [r for r in rows if r.user_id == owner_id]
    if filters.status is not None:
        rows = [r for r in rows if r.status is filters.status]
    if filters.future_only:
        now = now_utc()
        rows = [r for r in rows if r.start_time > now]

    rows.sort(key=attrgetter(field), reverse=descending)
    return rows[: filters.limit]


def list_my_reservations(
    actor: Actor,
    status: ReservationStatus | None = None,
    sort: str = DEFAULT_SORT,
    limit: int = 10,
    future_only: bool = False,
) -> list[Reservation]:
    filters = ReservationFilters(user_id=actor.user_id, status=status, sort=sort, limit=limit, future_only=future_only)
    return list_reservations(actor, filters)


def list_upcoming(actor: Actor, limit: int = 3) -> list[Reservation]:
    filters = ReservationFilters(status=ReservationStatus.CONFIRMED, future_only=True, limit=limit)
    return list_reservations(actor, filters)


def list_current(actor: Actor) -> list[Reservation]:
    authorize(Operation.LIST_ALL, actor)
    now = now_utc()
    current = [r for r in dal.list_reservations() if availability.is_current(r, now)]
    return sorted(current, key=attrgetter("start_time"))
