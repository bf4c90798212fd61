from __future__ import annotations

from collections import defaultdict

from aws_lambda_powertools import Logger

from classroom_booking import availability, dal, service
from classroom_booking.models import (
    Actor,
    Availability,
    AvailabilityQuery,
    AvailabilitySummary,
    Building,
    BuildingCreate,
    Classroom,
    ClassroomCreate,
    ClassroomType,
    Reservation,
)
from classroom_booking.policy import Operation, authorize
from classroom_booking.service import as_utc, validate_window

logger = Logger()


# Buildings


def list_buildings() -> list[Building]:
    return sorted(dal.list_buildings(), key=lambda b: b.name)


def get_building(building_id: str) -> Building:
    return dal.get_building(building_id)


def create_building(payload: BuildingCreate, actor: Actor) -> Building:
    authorize(Operation.MANAGE_CATALOGUE, actor)
    building = dal.save_building(Building(building_id=dal.new_id(), **payload.model_dump()))
    logger.info("Building created", extra={"building_id": building.building_id})
    return building


def update_building(building_id: str, payload: BuildingCreate, actor: Actor) -> Building:
    authorize(Operation.MANAGE_CATALOGUE, actor)
    existing = dal.get_building(building_id)
    return dal.save_building(existing.model_copy(update=payload.model_dump()))


def delete_building(building_id: str, actor: Actor) -> None:
    """Remove a building together with the classrooms it owns."""
    authorize(Operation.MANAGE_CATALOGUE, actor)
    dal.get_building(building_id)
    classrooms = dal.list_classrooms_in_building(building_id)
    for classroom in classrooms:
        dal.delete_classroom(classroom.classroom_id)
    dal.delete_building(building_id)
    logger.info("Building deleted", extra={"building_id": building_id, "classrooms_removed": len(classrooms)})


def list_classrooms_in_building(building_id: str) -> list[Classroom]:
    dal.get_building(building_id)
    return sorted(dal.list_classrooms_in_building(building_id), key=lambda c: c.name)


# Classrooms


def list_classrooms(type: ClassroomType | None = None, min_capacity: int | None = None) -> list[Classroom]:
    rooms = dal.list_classrooms()
    if type is not None:
        rooms = [c for c in rooms if c.type is type]
    if min_capacity is not None:
        rooms = [c for c in rooms if c.capacity >= min_capacity]
    return sorted(rooms, key=lambda c: c.name)


def get_classroom(classroom_id: str) -> Classroom:
    return dal.get_classroom(classroom_id)


def create_classroom(payload: ClassroomCreate, actor: Actor) -> Classroom:
    authorize(Operation.MANAGE_CATALOGUE, actor)
    dal.get_building(payload.building_id)
    classroom = dal.save_classroom(Classroom(classroom_id=dal.new_id(), **payload.model_dump()))
    logger.info("Classroom created", extra={"classroom_id": classroom.classroom_id, "building_id": classroom.building_id})
    return classroom


def update_classroom(classroom_id: str, payload: ClassroomCreate, actor: Actor) -> Classroom:
    authorize(Operation.MANAGE_CATALOGUE, actor)
    existing = dal.get_classroom(classroom_id)
    if payload.building_id != existing.building_id:
        dal.get_building(payload.building_id)
    return dal.save_classroom(existing.model_copy(update=payload.model_dump()))


def delete_classroom(classroom_id: str, actor: Actor) -> None:
    authorize(Operation.MANAGE_CATALOGUE, actor)
    dal.get_classroom(classroom_id)
    dal.delete_classroom(classroom_id)
    logger.info("Classroom deleted", extra={"classroom_id": classroom_id})


def _occupied_now() -> set[str]:
    by_room: dict[str, list[Reservation]] = defaultdict(list)
    for reservation in dal.list_reservations():
        by_room[reservation.classroom_id].append(reservation)
    now = service.now_utc()
    return {room for room, rows in by_room.items() if availability.is_occupied(rows, now)}


def classrooms_available_now() -> list[Classroom]:
    occupied = _occupied_now()
    return [c for c in list_classrooms() if c.classroom_id not in occupied]


def classrooms_unavailable_now() -> list[Classroom]:
    occupied = _occupied_now()
    return [c for c in list_classrooms() if c.classroom_id in occupied]


def availability_summary(actor: Actor) -> AvailabilitySummary:
    authorize(Operation.VIEW_STATS, actor)
    occupied = _occupied_now()
    rooms = dal.list_classrooms()
    unavailable = sum(1 for c in rooms if c.classroom_id in occupied)
    return AvailabilitySummary(total=len(rooms), available=len(rooms) - unavailable, unavailable=unavailable)


def check_availability(query: AvailabilityQuery) -> Availability:
    validate_window(query.start_time, query.end_time)
    classroom = dal.get_classroom(query.classroom_id)
    start, end = as_utc(query.start_time), as_utc(query.end_time)
    return Availability(
        classroom_id=classroom.classroom_id,
        start_time=start,
        end_time=end,
        is_available=availability.is_available(classroom.classroom_id, start, end),
    )
