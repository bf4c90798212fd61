from __future__ import annotations

from datetime import UTC, datetime

import pytest

from classroom_booking import catalogue, dal, service
from classroom_booking.errors import InvalidInputError, NotFoundError, PermissionDeniedError
from classroom_booking.models import (
    AvailabilityQuery,
    BuildingCreate,
    ClassroomCreate,
    ClassroomType,
    ReservationStatus,
)


def at(hour: int) -> datetime:
    return datetime(2030, 1, 1, hour, tzinfo=UTC)


def classroom_payload(**overrides) -> ClassroomCreate:
    base = dict(name="Lab 1", capacity=20, type=ClassroomType.LABORATORIO, resources=["pc"], building_id="b-main")
    base.update(overrides)
    return ClassroomCreate(**base)


def test_admin_creates_and_updates_building(admin):
    building = catalogue.create_building(BuildingCreate(name="Science", location="East"), admin)
    assert dal.get_building(building.building_id).name == "Science"
    updated = catalogue.update_building(building.building_id, BuildingCreate(name="Science II", location="East"), admin)
    assert updated.name == "Science II"
    assert [b.name for b in catalogue.list_buildings()] == ["Science II"]


def test_members_cannot_modify_catalogue(building, alice):
    with pytest.raises(PermissionDeniedError):
        catalogue.create_building(BuildingCreate(name="X", location="Y"), alice)
    with pytest.raises(PermissionDeniedError):
        catalogue.create_classroom(classroom_payload(), alice)
    with pytest.raises(PermissionDeniedError):
        catalogue.delete_building(building.building_id, alice)


def test_classroom_requires_existing_building(admin):
    with pytest.raises(NotFoundError, match="Building"):
        catalogue.create_classroom(classroom_payload(building_id="nowhere"), admin)


def test_create_and_filter_classrooms(classroom, admin):
    lab = catalogue.create_classroom(classroom_payload(), admin)
    auditorium = catalogue.create_classroom(
        classroom_payload(name="Aud", capacity=200, type=ClassroomType.AUDITORIO), admin
    )
    assert [c.classroom_id for c in catalogue.list_classrooms(type=ClassroomType.LABORATORIO)] == [lab.classroom_id]
    assert [c.classroom_id for c in catalogue.list_classrooms(min_capacity=100)] == [auditorium.classroom_id]
    assert len(catalogue.list_classrooms()) == 3


def test_update_classroom_to_unknown_building_is_not_found(classroom, admin):
    with pytest.raises(NotFoundError):
        catalogue.update_classroom(classroom.classroom_id, classroom_payload(building_id="nowhere"), admin)
    moved = catalogue.update_classroom(classroom.classroom_id, classroom_payload(capacity=45), admin)
    assert moved.capacity == 45
    assert moved.classroom_id == classroom.classroom_id


def test_deleting_building_removes_its_classrooms(classroom, building, admin):
    catalogue.delete_building(building.building_id, admin)
    with pytest.raises(NotFoundError):
        dal.get_classroom(classroom.classroom_id)
    with pytest.raises(NotFoundError):
        catalogue.list_classrooms_in_building(building.building_id)


def test_delete_unknown_classroom_is_not_found(classroom, admin):
    with pytest.raises(NotFoundError):
        catalogue.delete_classroom("nope", admin)
    catalogue.delete_classroom(classroom.classroom_id, admin)
    assert catalogue.list_classrooms() == []


def test_available_and_unavailable_now(classroom, admin, make_reservation, monkeypatch):
    other = catalogue.create_classroom(classroom_payload(name="B202"), admin)
    make_reservation(9, 11, status=ReservationStatus.CONFIRMED)
    make_reservation(9, 11, status=ReservationStatus.PENDING, classroom_id=other.classroom_id)
    monkeypatch.setattr(service, "now_utc", lambda: at(10))
    assert [c.classroom_id for c in catalogue.classrooms_unavailable_now()] == ["c101"]
    assert [c.classroom_id for c in catalogue.classrooms_available_now()] == [other.classroom_id]


@pytest.mark.parametrize("hour", [9, 11])
def test_room_is_available_at_reservation_boundaries(classroom, make_reservation, monkeypatch, hour):
    make_reservation(9, 11, status=ReservationStatus.CONFIRMED)
    monkeypatch.setattr(service, "now_utc", lambda: at(hour))
    assert [c.classroom_id for c in catalogue.classrooms_available_now()] == ["c101"]
    assert catalogue.classrooms_unavailable_now() == []


def test_check_availability(classroom, make_reservation):
    make_reservation(9, 11, status=ReservationStatus.CONFIRMED)
    busy = catalogue.check_availability(AvailabilityQuery(classroom_id="c101", start_time=at(10), end_time=at(12)))
    free = catalogue.check_availability(AvailabilityQuery(classroom_id="c101", start_time=at(11), end_time=at(13)))
    assert busy.is_available is False
    assert free.is_available is True


def test_check_availability_validates_input(classroom):
    with pytest.raises(InvalidInputError):
        catalogue.check_availability(AvailabilityQuery(classroom_id="c101", start_time=at(12), end_time=at(10)))
    with pytest.raises(NotFoundError):
        catalogue.check_availability(AvailabilityQuery(classroom_id="nope", start_time=at(9), end_time=at(10)))


def test_availability_summary_counts_rooms(classroom, admin, alice, make_reservation, monkeypatch):
    catalogue.create_classroom(classroom_payload(name="B202"), admin)
    catalogue.create_classroom(classroom_payload(name="B203"), admin)
    make_reservation(9, 11, status=ReservationStatus.CONFIRMED)
    monkeypatch.setattr(service, "now_utc", lambda: at(10))
    summary = catalogue.availability_summary(admin)
    assert (summary.total, summary.available, summary.unavailable) == (3, 2, 1)
    with pytest.raises(PermissionDeniedError):
        catalogue.availability_summary(alice)
