"""Who may do what to reservations, user accounts and the catalogue.

Every decision goes through :func:`authorize`, which looks the operation up in
``RULES`` and evaluates it against the acting user and the target resource.
The only place results are narrowed instead of refused is
:func:`scope_owner_filter`, used by list operations.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum

from aws_lambda_powertools import Logger

from classroom_booking.errors import PermissionDeniedError
from classroom_booking.models import Actor, ReservationStatus
from classroom_booking.state_machine import is_editable_by_owner

logger = Logger()


class Operation(StrEnum):
    CREATE = "create"
    READ = "read"
    LIST_ALL = "list_all"
    UPDATE_DETAILS = "update_details"
    UPDATE_STATUS = "update_status"
    CANCEL = "cancel"
    DELETE = "delete"
    MANAGE_CATALOGUE = "manage_catalogue"
    READ_USER = "read_user"
    MANAGE_USERS = "manage_users"
    VIEW_STATS = "view_stats"


@dataclass(frozen=True)
class Target:
    owner_id: str | None = None
    status: ReservationStatus | None = None
    requested_status: ReservationStatus | None = None


Rule = Callable[[Actor, Target], bool]


def _owns(actor: Actor, target: Target) -> bool:
    return target.owner_id is not None and target.owner_id == actor.user_id


def _admin(actor: Actor, target: Target) -> bool:
    return actor.is_admin


def _owner_or_admin(actor: Actor, target: Target) -> bool:
    return actor.is_admin or _owns(actor, target)


def _create(actor: Actor, target: Target) -> bool:
    # booking on behalf of someone else is an admin privilege
    return actor.is_admin or target.owner_id in (None, actor.user_id)


def _update_details(actor: Actor, target: Target) -> bool:
    if actor.is_admin:
        return True
    return _owns(actor, target) and target.status is not None and is_editable_by_owner(target.status)


def _update_status(actor: Actor, target: Target) -> bool:
    if actor.is_admin:
        return True
    return target.requested_status is ReservationStatus.CANCELLED and _owns(actor, target)


RULES: dict[Operation, Rule] = {
    Operation.CREATE: _create,
    Operation.READ: _owner_or_admin,
    Operation.LIST_ALL: _admin,
    Operation.UPDATE_DETAILS: _update_details,
    Operation.UPDATE_STATUS: _update_status,
    Operation.CANCEL: _owner_or_admin,
    Operation.DELETE: _owner_or_admin,
    Operation.MANAGE_CATALOGUE: _admin,
    Operation.READ_USER: _owner_or_admin,
    Operation.MANAGE_USERS: _admin,
    Operation.VIEW_STATS: _admin,
}

_DENIED: dict[Operation, str] = {
    Operation.CREATE: "Only administrators may book on behalf of another user",
    Operation.READ: "You do not have permission to view this reservation",
    Operation.LIST_ALL: "Only administrators may list every reservation",
    Operation.UPDATE_DETAILS: "You may only modify your own reservations while they are PENDING",
    Operation.UPDATE_STATUS: "Only administrators may change the status of a reservation",
    Operation.CANCEL: "You do not have permission to cancel this reservation",
    Operation.DELETE: "You do not have permission to delete this reservation",
    Operation.MANAGE_CATALOGUE: "Only administrators may modify buildings and classrooms",
    Operation.READ_USER: "You may only view your own account",
    Operation.MANAGE_USERS: "Only administrators may manage users",
    Operation.VIEW_STATS: "Only administrators may view classroom statistics",
}


def is_allowed(operation: Operation, actor: Actor, target: Target | None = None) -> bool:
    return RULES[operation](actor, target or Target())


def authorize(operation: Operation, actor: Actor, target: Target | None = None) -> None:
    if not is_allowed(operation, actor, target):
        logger.warning(
            "Permission denied",
            extra={"operation": operation.value, "user_id": actor.user_id, "role": actor.role.value},
        )
        raise PermissionDeniedError(_DENIED[operation])


def scope_owner_filter(actor: Actor, requested_user_id: str | None) -> str | None:
    """Owner filter to apply to a listing: members only ever see their own."""
    if is_allowed(Operation.LIST_ALL, actor):
        return requested_user_id
    return actor.user_id
