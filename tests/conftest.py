from __future__ import annotations

import os
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from operator import eq, ge, gt, le, lt, ne
from typing import Any

os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "1")
os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "ClassroomBooking")
os.environ.setdefault("LOCK_POLL_SECONDS", "0.01")

import pytest  # noqa: E402
from botocore.exceptions import ClientError  # noqa: E402

from classroom_booking import dal  # noqa: E402
from classroom_booking.models import (  # noqa: E402
    Actor,
    Building,
    Classroom,
    ClassroomType,
    Reservation,
    ReservationStatus,
    Role,
    User,
)

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {"=": eq, "<>": ne, "<": lt, "<=": le, ">": gt, ">=": ge}


def evaluate(condition: Any, item: dict[str, Any]) -> bool:
    """Evaluate a boto3 Key/Attr condition against a plain item."""
    expr = condition.get_expression()
    op, values = expr["operator"], expr["values"]
    if op == "AND":
        return all(evaluate(v, item) for v in values)
    if op == "OR":
        return any(evaluate(v, item) for v in values)
    if op == "NOT":
        return not evaluate(values[0], item)
    name = values[0].name
    if op == "attribute_not_exists":
        return name not in item
    if op == "attribute_exists":
        return name in item
    if name not in item:
        return False
    return _COMPARATORS[op](item[name], values[1])


def _conditional_failure(operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        operation,
    )


class FakeTable:
    """In-memory table. After ``lag()`` eventually consistent reads see the frozen state."""

    def __init__(self, *key: str):
        self.key = key
        self.items: dict[Any, dict[str, Any]] = {}
        self.calls: list[str] = []
        self.read_kwargs: list[dict[str, Any]] = []
        self._stale: dict[Any, dict[str, Any]] | None = None
        self._mutex = threading.Lock()

    def _id(self, item: dict[str, Any]) -> Any:
        return item[self.key[0]] if len(self.key) == 1 else tuple(item[k] for k in self.key)

    def lag(self) -> None:
        with self._mutex:
            self._stale = {k: dict(v) for k, v in self.items.items()}

    def _view(self, consistent: bool) -> dict[Any, dict[str, Any]]:
        if consistent or self._stale is None:
            return self.items
        return self._stale

    def put_item(self, Item, ConditionExpression=None):  # noqa NOSONAR
        with self._mutex:
            self.calls.append("put_item")
            existing = self.items.get(self._id(Item), {})
            if ConditionExpression is not None and not evaluate(ConditionExpression, existing):
                raise _conditional_failure("PutItem")
            self.items[self._id(Item)] = dict(Item)
        return {}

    def get_item(self, Key, ConsistentRead=False):  # noqa NOSONAR
        self.read_kwargs.append({"ConsistentRead": ConsistentRead})
        item = self._view(ConsistentRead).get(self._id(Key))
        return {"Item": dict(item)} if item else {}

    def delete_item(self, Key, ConditionExpression=None):  # noqa NOSONAR
        with self._mutex:
            self.calls.append("delete_item")
            existing = self.items.get(self._id(Key), {})
            if ConditionExpression is not None and not evaluate(ConditionExpression, existing):
                raise _conditional_failure("DeleteItem")
            self.items.pop(self._id(Key), None)
        return {}

    def query(self, KeyConditionExpression, FilterExpression=None, IndexName=None, ConsistentRead=False, **kwargs):  # noqa NOSONAR
        self.calls.append("query")
        self.read_kwargs.append({"IndexName": IndexName, "ConsistentRead": ConsistentRead})
        if IndexName is not None and ConsistentRead:
            raise ClientError(
                {"Error": {"Code": "ValidationException", "Message": "Consistent reads are not supported on GSIs"}},
                "Query",
            )
        return {"Items": self._select(ConsistentRead, KeyConditionExpression, FilterExpression)}

    def scan(self, FilterExpression=None, ConsistentRead=False, **kwargs):  # noqa NOSONAR
        self.calls.append("scan")
        return {"Items": self._select(ConsistentRead, None, FilterExpression)}

    def _select(self, consistent: bool, *conditions: Any) -> list[dict[str, Any]]:
        with self._mutex:
            snapshot = [dict(it) for it in self._view(consistent).values()]
        return [it for it in snapshot if all(c is None or evaluate(c, it) for c in conditions)]


@pytest.fixture(autouse=True)
def tables(monkeypatch: pytest.MonkeyPatch) -> dict[str, FakeTable]:
    fakes = {
        "reservations": FakeTable("reservation_id"),
        "classrooms": FakeTable("classroom_id"),
        "buildings": FakeTable("building_id"),
        "users": FakeTable("user_id"),
        "locks": FakeTable("lock_id"),
        "slots": FakeTable("classroom_id", "slot_key"),
    }
    for name, fake in fakes.items():
        monkeypatch.setattr(dal, f"_{name}", fake)
    return fakes


@pytest.fixture()
def admin() -> Actor:
    return Actor(user_id="admin-1", role=Role.ADMIN, email="admin@example.com")


@pytest.fixture()
def alice() -> Actor:
    return Actor(user_id="alice", email="alice@example.com")


@pytest.fixture()
def bob() -> Actor:
    return Actor(user_id="bob", email="bob@example.com")


@pytest.fixture()
def users(admin: Actor, alice: Actor, bob: Actor) -> list[User]:
    return [
        dal.save_user(User(user_id=a.user_id, email=a.email or f"{a.user_id}@example.com", role=a.role))
        for a in (admin, alice, bob)
    ]


@pytest.fixture()
def building() -> Building:
    return dal.save_building(Building(building_id="b-main", name="Main", location="North campus"))


@pytest.fixture()
def classroom(building: Building, users: list[User]) -> Classroom:
    return dal.save_classroom(
        Classroom(
            classroom_id="c101",
            name="C101",
            capacity=30,
            type=ClassroomType.AULA,
            resources=["projector"],
            building_id=building.building_id,
        )
    )


def _at(hour: int, minute: int = 0, day: int = 1) -> datetime:
    return datetime(2030, 1, day, hour, minute, tzinfo=UTC)


@pytest.fixture()
def make_reservation(classroom: Classroom) -> Callable[..., Reservation]:
    def factory(
        start_hour: int,
        end_hour: int,
        status: ReservationStatus = ReservationStatus.PENDING,
        user_id: str = "alice",
        classroom_id: str | None = None,
        day: int = 1,
    ) -> Reservation:
        return dal.save_reservation(
            Reservation(
                reservation_id=dal.new_id(),
                classroom_id=classroom_id or classroom.classroom_id,
                user_id=user_id,
                start_time=_at(start_hour, day=day),
                end_time=_at(end_hour, day=day),
                status=status,
            )
        )

    return factory
