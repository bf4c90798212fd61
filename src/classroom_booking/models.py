from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class ReservationStatus(StrEnum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class Role(StrEnum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"


class ClassroomType(StrEnum):
    AULA = "AULA"
    LABORATORIO = "LABORATORIO"
    AUDITORIO = "AUDITORIO"


class Actor(BaseModel):
    """Authenticated identity performing an operation."""

    user_id: str = Field(..., min_length=1)
    role: Role = Role.MEMBER
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN


class User(BaseModel):
    user_id: str
    email: str
    role: Role = Role.MEMBER
    # opaque, produced by the credential collaborator
    password_hash: str | None = Field(default=None, exclude=True)


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3)
    role: Role = Role.MEMBER


class UserUpdate(BaseModel):
    email: str | None = Field(default=None, min_length=3)
    role: Role | None = None


class BuildingCreate(BaseModel):
    name: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)


class Building(BaseModel):
    building_id: str
    name: str
    location: str


class ClassroomCreate(BaseModel):
    name: str = Field(..., min_length=1)
    capacity: int = Field(..., ge=1)
    type: ClassroomType
    resources: list[str] = Field(default_factory=list)
    building_id: str = Field(..., min_length=1)


class Classroom(BaseModel):
    classroom_id: str
    name: str
    capacity: int
    type: ClassroomType
    resources: list[str] = Field(default_factory=list)
    building_id: str


class ReservationCreate(BaseModel):
    classroom_id: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime
    purpose: str | None = None
    # admins may book on behalf of another user
    user_id: str | None = None


class ReservationUpdate(BaseModel):
    classroom_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    purpose: str | None = None
    user_id: str | None = None
    status: ReservationStatus | None = None


class AvailabilityQuery(BaseModel):
    classroom_id: str = Field(..., min_length=1)
    start_time: datetime
    end_time: datetime


class Availability(BaseModel):
    classroom_id: str
    start_time: datetime
    end_time: datetime
    is_available: bool


class AvailabilitySummary(BaseModel):
    total: int
    available: int
    unavailable: int


class ReservationFilters(BaseModel):
    classroom_id: str | None = None
    user_id: str | None = None
    status: ReservationStatus | None = None
    sort: str = "start_time,asc"
    limit: int = Field(default=100, ge=1)
    future_only: bool = False


class Reservation(BaseModel):
    reservation_id: str
    classroom_id: str
    user_id: str
    start_time: datetime
    end_time: datetime
    status: ReservationStatus = ReservationStatus.PENDING
    purpose: str | None = None
