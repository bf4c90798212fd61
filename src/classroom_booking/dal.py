from __future__ import annotations

import os
import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, TypedDict, cast

import boto3
from aws_lambda_powertools import Logger
from boto3.dynamodb.conditions import Attr, Key
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    # Only for static type checking; not imported at runtime
    from mypy_boto3_dynamodb.service_resource import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table as DynamoDBTable
else:
    # Fallbacks to satisfy annotations at runtime
    DynamoDBServiceResource = Any  # type: ignore[assignment]
    DynamoDBTable = Any  # type: ignore[assignment]

from .errors import ConflictError, NotFoundError
from .models import Building, Classroom, ClassroomType, Reservation, ReservationStatus, Role, User

logger = Logger()

_RESERVATIONS_TABLE = os.environ.get("RESERVATIONS_TABLE", "reservations")
_CLASSROOMS_TABLE = os.environ.get("CLASSROOMS_TABLE", "classrooms")
_BUILDINGS_TABLE = os.environ.get("BUILDINGS_TABLE", "buildings")
_USERS_TABLE = os.environ.get("USERS_TABLE", "users")
_LOCKS_TABLE = os.environ.get("LOCKS_TABLE", "reservation_locks")
_SLOTS_TABLE = os.environ.get("SLOTS_TABLE", "reservation_slots")

LOCK_LEASE_SECONDS = int(os.environ.get("LOCK_LEASE_SECONDS", "10"))
LOCK_TIMEOUT_SECONDS = float(os.environ.get("LOCK_TIMEOUT_SECONDS", "5"))
LOCK_POLL_SECONDS = float(os.environ.get("LOCK_POLL_SECONDS", "0.05"))

_dynamodb: DynamoDBServiceResource = boto3.resource("dynamodb")
_reservations: DynamoDBTable = _dynamodb.Table(_RESERVATIONS_TABLE)
_classrooms: DynamoDBTable = _dynamodb.Table(_CLASSROOMS_TABLE)
_buildings: DynamoDBTable = _dynamodb.Table(_BUILDINGS_TABLE)
_users: DynamoDBTable = _dynamodb.Table(_USERS_TABLE)
_locks: DynamoDBTable = _dynamodb.Table(_LOCKS_TABLE)
# CONFIRMED reservations keyed by classroom, so the availability check can read consistently
_slots: DynamoDBTable = _dynamodb.Table(_SLOTS_TABLE)

USER_INDEX = "user_id_index"
CLASSROOM_INDEX = "classroom_id_index"
BUILDING_INDEX = "building_id_index"


class ReservationItem(TypedDict, total=False):
    reservation_id: str
    classroom_id: str
    user_id: str
    start_time: str
    end_time: str
    status: str
    purpose: str


class ClassroomItem(TypedDict, total=False):
    classroom_id: str
    name: str
    capacity: int
    type: str
    resources: list[str]
    building_id: str


class BuildingItem(TypedDict, total=False):
    building_id: str
    name: str
    location: str


class UserItem(TypedDict, total=False):
    user_id: str
    email: str
    role: str
    password_hash: str


def new_id() -> str:
    return str(uuid.uuid4())


def _dt_to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    # fixed width so that string order matches time order in key conditions
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def _iso_to_dt(s: str) -> datetime:
    return datetime.fromisoformat(s)


def _collect(operation: Callable[..., Any], **kwargs: Any) -> list[dict[str, Any]]:
    """Run a query/scan and follow ``LastEvaluatedKey`` until exhausted."""
    items: list[dict[str, Any]] = []
    while True:
        resp = cast(dict[str, Any], operation(**kwargs))
        items.extend(it for it in resp.get("Items", []) if isinstance(it, dict))
        last_key = resp.get("LastEvaluatedKey")
        if not last_key:
            return items
        kwargs["ExclusiveStartKey"] = last_key


def _get(table: DynamoDBTable, key_name: str, key: str, entity: str) -> dict[str, Any]:
    resp = cast(dict[str, Any], table.get_item(Key={key_name: key}, ConsistentRead=True))
    item = resp.get("Item")
    if not isinstance(item, dict):
        raise NotFoundError(entity, key)
    return item


# Reservations


def get_reservation(reservation_id: str) -> Reservation:
    item = _get(_reservations, "reservation_id", reservation_id, "Reservation")
    return _to_reservation(cast(ReservationItem, item))


def list_reservations() -> list[Reservation]:
    return [_to_reservation(cast(ReservationItem, it)) for it in _collect(_reservations.scan)]


def list_reservations_for_user(user_id: str) -> list[Reservation]:
    items = _collect(
        _reservations.query,
        IndexName=USER_INDEX,
        KeyConditionExpression=Key("user_id").eq(user_id),
    )
    return [_to_reservation(cast(ReservationItem, it)) for it in items]


def list_reservations_for_classroom(classroom_id: str) -> list[Reservation]:
    items = _collect(
        _reservations.query,
        IndexName=CLASSROOM_INDEX,
        KeyConditionExpression=Key("classroom_id").eq(classroom_id),
    )
    return [_to_reservation(cast(ReservationItem, it)) for it in items]


def find_overlapping(
    classroom_id: str,
    start: datetime,
    end: datetime,
    exclude_id: str | None = None,
) -> list[Reservation]:
    """CONFIRMED reservations of ``classroom_id`` whose window intersects ``[start, end)``.

    Reads the slot table with ``ConsistentRead`` so a confirmation committed by
    the previous lock holder is always visible.
    """
    filter_expr = Attr("end_time").gt(_dt_to_iso(start))
    if exclude_id is not None:
        filter_expr = filter_expr & Attr("reservation_id").ne(exclude_id)
    # slot_key starts with start_time, so "< end" on the key means start_time < end
    items = _collect(
        _slots.query,
        KeyConditionExpression=Key("classroom_id").eq(classroom_id) & Key("slot_key").lt(_dt_to_iso(end)),
        FilterExpression=filter_expr,
        ConsistentRead=True,
    )
    return [_to_reservation(cast(ReservationItem, it)) for it in items]


def _slot_key(item: ReservationItem) -> str:
    return f"{item['start_time']}#{item['reservation_id']}"


def _confirmed(item: ReservationItem | None) -> bool:
    return item is not None and item.get("status") == ReservationStatus.CONFIRMED.value


def _current_item(reservation_id: str) -> ReservationItem | None:
    resp = cast(dict[str, Any], _reservations.get_item(Key={"reservation_id": reservation_id}, ConsistentRead=True))
    item = resp.get("Item")
    return cast(ReservationItem, item) if isinstance(item, dict) else None


def save_reservation(reservation: Reservation) -> Reservation:
    item: ReservationItem = {
        "reservation_id": reservation.reservation_id,
        "classroom_id": reservation.classroom_id,
        "user_id": reservation.user_id,
        "start_time": _dt_to_iso(reservation.start_time),
        "end_time": _dt_to_iso(reservation.end_time),
        "status": reservation.status.value,
    }
    if reservation.purpose is not None:
        item["purpose"] = reservation.purpose

    previous = _current_item(reservation.reservation_id)
    logger.debug("Saving reservation", extra={"reservation_id": reservation.reservation_id})
    # Slot goes in before the reservation and comes out after it: a partial
    # failure can only leave a window blocked, never double-booked.
    if _confirmed(item):
        _slots.put_item(Item={**item, "slot_key": _slot_key(item)})  # type: ignore
    _reservations.put_item(Item=item)  # type: ignore
    if previous is not None and _confirmed(previous):
        old_key = (previous["classroom_id"], _slot_key(previous))
        if not _confirmed(item) or old_key != (item["classroom_id"], _slot_key(item)):
            _slots.delete_item(Key={"classroom_id": old_key[0], "slot_key": old_key[1]})
    return _to_reservation(item)


def delete_reservation(reservation_id: str) -> None:
    previous = _current_item(reservation_id)
    _reservations.delete_item(Key={"reservation_id": reservation_id})
    if previous is not None and _confirmed(previous):
        _slots.delete_item(Key={"classroom_id": previous["classroom_id"], "slot_key": _slot_key(previous)})


def _to_reservation(item: ReservationItem) -> Reservation:
    return Reservation(
        reservation_id=item["reservation_id"],
        classroom_id=item["classroom_id"],
        user_id=item["user_id"],
        start_time=_iso_to_dt(item["start_time"]),
        end_time=_iso_to_dt(item["end_time"]),
        status=ReservationStatus(item.get("status", ReservationStatus.PENDING.value)),
        purpose=item.get("purpose"),
    )


# Classrooms


def get_classroom(classroom_id: str) -> Classroom:
    item = _get(_classrooms, "classroom_id", classroom_id, "Classroom")
    return _to_classroom(cast(ClassroomItem, item))


def list_classrooms() -> list[Classroom]:
    return [_to_classroom(cast(ClassroomItem, it)) for it in _collect(_classrooms.scan)]


def list_classrooms_in_building(building_id: str) -> list[Classroom]:
    items = _collect(
        _classrooms.query,
        IndexName=BUILDING_INDEX,
        KeyConditionExpression=Key("building_id").eq(building_id),
    )
    return [_to_classroom(cast(ClassroomItem, it)) for it in items]


def save_classroom(classroom: Classroom) -> Classroom:
    item: ClassroomItem = {
        "classroom_id": classroom.classroom_id,
        "name": classroom.name,
        "capacity": classroom.capacity,
        "type": classroom.type.value,
        "resources": list(classroom.resources),
        "building_id": classroom.building_id,
    }
    _classrooms.put_item(Item=item)  # type: ignore
    return _to_classroom(item)


def delete_classroom(classroom_id: str) -> None:
    _classrooms.delete_item(Key={"classroom_id": classroom_id})


def _to_classroom(item: ClassroomItem) -> Classroom:
    return Classroom(
        classroom_id=item["classroom_id"],
        name=item["name"],
        # DynamoDB hands numbers back as Decimal
        capacity=int(item["capacity"]),
        type=ClassroomType(item["type"]),
        resources=list(item.get("resources", [])),
        building_id=item["building_id"],
    )


# Buildings


def get_building(building_id: str) -> Building:
    item = _get(_buildings, "building_id", building_id, "Building")
    return _to_building(cast(BuildingItem, item))


def list_buildings() -> list[Building]:
    return [_to_building(cast(BuildingItem, it)) for it in _collect(_buildings.scan)]


def save_building(building: Building) -> Building:
    item: BuildingItem = {
        "building_id": building.building_id,
        "name": building.name,
        "location": building.location,
    }
    _buildings.put_item(Item=item)  # type: ignore
    return _to_building(item)


def delete_building(building_id: str) -> None:
    _buildings.delete_item(Key={"building_id": building_id})


def _to_building(item: BuildingItem) -> Building:
    return Building(building_id=item["building_id"], name=item["name"], location=item["location"])


# Users


def get_user(user_id: str) -> User:
    return _to_user(cast(UserItem, _get(_users, "user_id", user_id, "User")))


def list_users(role: Role | None = None) -> list[User]:
    kwargs: dict[str, Any] = {}
    if role is not None:
        kwargs["FilterExpression"] = Attr("role").eq(role.value)
    return [_to_user(cast(UserItem, it)) for it in _collect(_users.scan, **kwargs)]


def find_user_by_email(email: str) -> User | None:
    items = _collect(_users.scan, FilterExpression=Attr("email").eq(email))
    return _to_user(cast(UserItem, items[0])) if items else None


def save_user(user: User) -> User:
    item: UserItem = {"user_id": user.user_id, "email": user.email, "role": user.role.value}
    if user.password_hash is not None:
        item["password_hash"] = user.password_hash
    _users.put_item(Item=item)  # type: ignore
    return user


def delete_user(user_id: str) -> None:
    _users.delete_item(Key={"user_id": user_id})


def _to_user(item: UserItem) -> User:
    return User(
        user_id=item["user_id"],
        email=item["email"],
        role=Role(item.get("role", Role.MEMBER.value)),
        password_hash=item.get("password_hash"),
    )


# Locking


def _try_acquire(lock_id: str, token: str) -> bool:
    now = int(time.time())
    try:
        _locks.put_item(
            Item={"lock_id": lock_id, "owner": token, "expires_at": now + LOCK_LEASE_SECONDS},
            ConditionExpression=Attr("lock_id").not_exists() | Attr("expires_at").lt(now),
        )
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            return False
        raise
    return True


def _release(lock_id: str, token: str) -> None:
    try:
        _locks.delete_item(Key={"lock_id": lock_id}, ConditionExpression=Attr("owner").eq(token))
    except ClientError as exc:
        if exc.response.get("Error", {}).get("Code") != "ConditionalCheckFailedException":
            raise
        # lease expired and someone else holds it now
        logger.warning("Lock lost before release", extra={"lock_id": lock_id})


@contextmanager
def classroom_lock(classroom_id: str) -> Iterator[None]:
    """Serialize check-then-write sequences on one classroom.

    Lease lock on a DynamoDB item; waits at most ``LOCK_TIMEOUT_SECONDS`` and
    raises ``ConflictError`` when the room stays busy.
    """
    lock_id = f"classroom#{classroom_id}"
    token = new_id()
    deadline = time.monotonic() + LOCK_TIMEOUT_SECONDS
    while not _try_acquire(lock_id, token):
        if time.monotonic() >= deadline:
            logger.warning("Timed out waiting for classroom lock", extra={"classroom_id": classroom_id})
            raise ConflictError(f"Classroom {classroom_id} is busy, try again later")
        time.sleep(LOCK_POLL_SECONDS)

    logger.debug("Classroom lock acquired", extra={"classroom_id": classroom_id})
    try:
        yield
    finally:
        _release(lock_id, token)
