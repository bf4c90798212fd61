from __future__ import annotations

from datetime import datetime


class ReservationError(Exception):
    """Base class for every error raised by the booking core."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class NotFoundError(ReservationError, LookupError):
    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: {entity_id}")
        self.entity = entity
        self.entity_id = entity_id


class InvalidInputError(ReservationError, ValueError):
    pass


class PermissionDeniedError(ReservationError):
    pass


class ConflictError(ReservationError):
    pass


class SlotUnavailableError(ConflictError):
    def __init__(self, classroom_name: str, start: datetime, end: datetime) -> None:
        super().__init__(
            f"Classroom {classroom_name} is not available from "
            f"{start.isoformat()} to {end.isoformat()}"
        )
        self.classroom_name = classroom_name
        self.start = start
        self.end = end


class InvalidTransitionError(ReservationError):
    def __init__(self, current: str, requested: str) -> None:
        super().__init__(f"Status transition not allowed: {current} -> {requested}")
        self.current = current
        self.requested = requested
