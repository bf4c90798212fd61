"""User account administration.

Credentials are issued and checked by the identity provider; this module only
keeps the profile (email and role) that authorization decisions rely on.
"""
from __future__ import annotations

from operator import attrgetter

from aws_lambda_powertools import Logger

from classroom_booking import dal
from classroom_booking.errors import ConflictError
from classroom_booking.models import Actor, Reservation, Role, User, UserCreate, UserUpdate
from classroom_booking.policy import Operation, Target, authorize

logger = Logger()


def _ensure_email_free(email: str, user_id: str | None = None) -> None:
    holder = dal.find_user_by_email(email)
    if holder is not None and holder.user_id != user_id:
        raise ConflictError(f"Email already registered: {email}")


def list_users(actor: Actor, role: Role | None = None) -> list[User]:
    authorize(Operation.MANAGE_USERS, actor)
    return sorted(dal.list_users(role), key=attrgetter("email"))


def get_user(user_id: str, actor: Actor) -> User:
    authorize(Operation.READ_USER, actor, Target(owner_id=user_id))
    return dal.get_user(user_id)


def create_user(payload: UserCreate, actor: Actor) -> User:
    authorize(Operation.MANAGE_USERS, actor)
    _ensure_email_free(payload.email)
    user = dal.save_user(User(user_id=dal.new_id(), email=payload.email, role=payload.role))
    logger.info("User created", extra={"user_id": user.user_id, "role": user.role.value})
    return user


def update_user(user_id: str, payload: UserUpdate, actor: Actor) -> User:
    authorize(Operation.MANAGE_USERS, actor)
    existing = dal.get_user(user_id)
    changes = payload.model_dump(exclude_none=True)
    if "email" in changes:
        _ensure_email_free(changes["email"], user_id)
    return dal.save_user(existing.model_copy(update=changes))


def delete_user(user_id: str, actor: Actor) -> None:
    """Remove an account together with the reservations it owns."""
    authorize(Operation.MANAGE_USERS, actor)
    dal.get_user(user_id)
    reservations = dal.list_reservations_for_user(user_id)
    for reservation in reservations:
        dal.delete_reservation(reservation.reservation_id)
    dal.delete_user(user_id)
    logger.info("User deleted", extra={"user_id": user_id, "reservations_removed": len(reservations)})


def list_user_reservations(user_id: str, actor: Actor) -> list[Reservation]:
    authorize(Operation.READ_USER, actor, Target(owner_id=user_id))
    dal.get_user(user_id)
    return sorted(dal.list_reservations_for_user(user_id), key=attrgetter("start_time"))
