from __future__ import annotations

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.metrics import Metrics, MetricUnit
from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.responses import JSONResponse
from starlette.responses import Response

from classroom_booking import accounts, catalogue, service
from classroom_booking.errors import (
    ConflictError,
    InvalidInputError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ReservationError,
)
from classroom_booking.identity import get_actor
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
    ReservationCreate,
    ReservationFilters,
    ReservationStatus,
    ReservationUpdate,
    Role,
    User,
    UserCreate,
    UserUpdate,
)

logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="ClassroomBooking")

app = FastAPI(title="Classroom Booking API", version="0.1.0")

_STATUS_BY_ERROR: list[tuple[type[ReservationError], int]] = [
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidInputError, status.HTTP_400_BAD_REQUEST),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (ConflictError, status.HTTP_409_CONFLICT),
]


@app.exception_handler(ReservationError)
def handle_reservation_error(request: Request, exc: ReservationError) -> JSONResponse:
    code = next((c for cls, c in _STATUS_BY_ERROR if isinstance(exc, cls)), status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, ConflictError):
        metrics.add_metric(name="ReservationConflict", value=1, unit=MetricUnit.Count)
    logger.info("Request rejected", extra={"path": request.url.path, "status_code": code, "reason": str(exc)})
    return JSONResponse(status_code=code, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


# Reservations


@tracer.capture_method
@app.get("/reservations", response_model=list[Reservation])
def list_reservations(
    classroom_id: str | None = None,
    user_id: str | None = None,
    status: ReservationStatus | None = None,
    sort: str = service.DEFAULT_SORT,
    limit: int = Query(default=100, ge=1),
    future_only: bool = False,
    actor: Actor = Depends(get_actor),
) -> list[Reservation]:
    filters = ReservationFilters(
        classroom_id=classroom_id,
        user_id=user_id,
        status=status,
        sort=sort,
        limit=limit,
        future_only=future_only,
    )
    return service.list_reservations(actor, filters)


@tracer.capture_method
@app.get("/reservations/upcoming", response_model=list[Reservation])
def list_upcoming(limit: int = Query(default=3, ge=1), actor: Actor = Depends(get_actor)) -> list[Reservation]:
    return service.list_upcoming(actor, limit)


@tracer.capture_method
@app.get("/reservations/current", response_model=list[Reservation])
def list_current(actor: Actor = Depends(get_actor)) -> list[Reservation]:
    return service.list_current(actor)


@tracer.capture_method
@app.get("/reservations/{reservation_id}", response_model=Reservation)
def get_reservation(reservation_id: str, actor: Actor = Depends(get_actor)) -> Reservation:
    return service.get_reservation(reservation_id, actor)


@tracer.capture_method
@app.post("/reservations", response_model=Reservation, status_code=201)
def create_reservation(payload: ReservationCreate, actor: Actor = Depends(get_actor)) -> Reservation:
    reservation = service.create_reservation(payload, actor)
    metrics.add_metric(name="ReservationCreated", value=1, unit=MetricUnit.Count)
    return reservation


@tracer.capture_method
@app.put("/reservations/{reservation_id}", response_model=Reservation)
def update_reservation(
    reservation_id: str, payload: ReservationUpdate, actor: Actor = Depends(get_actor)
) -> Reservation:
    return service.update_details(reservation_id, payload, actor)


@tracer.capture_method
@app.api_route("/reservations/{reservation_id}/status", methods=["PUT", "PATCH"], response_model=Reservation)
def update_reservation_status(
    reservation_id: str, status: ReservationStatus, actor: Actor = Depends(get_actor)
) -> Reservation:
    reservation = service.update_status(reservation_id, status, actor)
    if reservation.status is ReservationStatus.CONFIRMED:
        metrics.add_metric(name="ReservationConfirmed", value=1, unit=MetricUnit.Count)
    return reservation


@tracer.capture_method
@app.patch("/reservations/{reservation_id}/cancel", response_model=Reservation)
def cancel_reservation(reservation_id: str, actor: Actor = Depends(get_actor)) -> Reservation:
    return service.cancel_reservation(reservation_id, actor)


@tracer.capture_method
@app.delete("/reservations/{reservation_id}")
def delete_reservation(reservation_id: str, actor: Actor = Depends(get_actor)) -> Response:
    service.delete_reservation(reservation_id, actor)
    return Response(status_code=204)


@tracer.capture_method
@app.get("/users/me/reservations", response_model=list[Reservation])
def list_my_reservations(
    status: ReservationStatus | None = None,
    sort: str = service.DEFAULT_SORT,
    limit: int = Query(default=10, ge=1),
    future_only: bool = False,
    actor: Actor = Depends(get_actor),
) -> list[Reservation]:
    return service.list_my_reservations(actor, status=status, sort=sort, limit=limit, future_only=future_only)


# Users


@app.get("/users", response_model=list[User])
def list_users(actor: Actor = Depends(get_actor)) -> list[User]:
    return accounts.list_users(actor)


@app.get("/users/role/{role}", response_model=list[User])
def list_users_by_role(role: Role, actor: Actor = Depends(get_actor)) -> list[User]:
    return accounts.list_users(actor, role=role)


@app.get("/users/{user_id}", response_model=User)
def get_user(user_id: str, actor: Actor = Depends(get_actor)) -> User:
    return accounts.get_user(user_id, actor)


@tracer.capture_method
@app.get("/users/{user_id}/reservations", response_model=list[Reservation])
def list_user_reservations(user_id: str, actor: Actor = Depends(get_actor)) -> list[Reservation]:
    return accounts.list_user_reservations(user_id, actor)


@app.post("/users", response_model=User, status_code=201)
def create_user(payload: UserCreate, actor: Actor = Depends(get_actor)) -> User:
    return accounts.create_user(payload, actor)


@app.put("/users/{user_id}", response_model=User)
def update_user(user_id: str, payload: UserUpdate, actor: Actor = Depends(get_actor)) -> User:
    return accounts.update_user(user_id, payload, actor)


@app.delete("/users/{user_id}")
def delete_user(user_id: str, actor: Actor = Depends(get_actor)) -> Response:
    accounts.delete_user(user_id, actor)
    return Response(status_code=204)


# Buildings


@app.get("/buildings", response_model=list[Building])
def list_buildings(actor: Actor = Depends(get_actor)) -> list[Building]:
    return catalogue.list_buildings()


@app.get("/buildings/{building_id}", response_model=Building)
def get_building(building_id: str, actor: Actor = Depends(get_actor)) -> Building:
    return catalogue.get_building(building_id)


@app.get("/buildings/{building_id}/classrooms", response_model=list[Classroom])
def list_building_classrooms(building_id: str, actor: Actor = Depends(get_actor)) -> list[Classroom]:
    return catalogue.list_classrooms_in_building(building_id)


@app.post("/buildings", response_model=Building, status_code=201)
def create_building(payload: BuildingCreate, actor: Actor = Depends(get_actor)) -> Building:
    return catalogue.create_building(payload, actor)


@app.put("/buildings/{building_id}", response_model=Building)
def update_building(building_id: str, payload: BuildingCreate, actor: Actor = Depends(get_actor)) -> Building:
    return catalogue.update_building(building_id, payload, actor)


@app.delete("/buildings/{building_id}")
def delete_building(building_id: str, actor: Actor = Depends(get_actor)) -> Response:
    catalogue.delete_building(building_id, actor)
    return Response(status_code=204)


# Classrooms


@app.get("/classrooms", response_model=list[Classroom])
def list_classrooms(
    type: ClassroomType | None = None,
    min_capacity: int | None = Query(default=None, ge=1),
    actor: Actor = Depends(get_actor),
) -> list[Classroom]:
    return catalogue.list_classrooms(type=type, min_capacity=min_capacity)


@app.get("/classrooms/available-now", response_model=list[Classroom])
def classrooms_available_now(actor: Actor = Depends(get_actor)) -> list[Classroom]:
    return catalogue.classrooms_available_now()


@app.get("/classrooms/unavailable-now", response_model=list[Classroom])
def classrooms_unavailable_now(actor: Actor = Depends(get_actor)) -> list[Classroom]:
    return catalogue.classrooms_unavailable_now()


@app.get("/classrooms/stats/availability", response_model=AvailabilitySummary)
def classroom_availability_summary(actor: Actor = Depends(get_actor)) -> AvailabilitySummary:
    return catalogue.availability_summary(actor)


@tracer.capture_method
@app.post("/classrooms/check-availability", response_model=Availability)
def check_availability(query: AvailabilityQuery, actor: Actor = Depends(get_actor)) -> Availability:
    return catalogue.check_availability(query)


@app.get("/classrooms/{classroom_id}", response_model=Classroom)
def get_classroom(classroom_id: str, actor: Actor = Depends(get_actor)) -> Classroom:
    return catalogue.get_classroom(classroom_id)


@app.post("/classrooms", response_model=Classroom, status_code=201)
def create_classroom(payload: ClassroomCreate, actor: Actor = Depends(get_actor)) -> Classroom:
    return catalogue.create_classroom(payload, actor)


@app.put("/classrooms/{classroom_id}", response_model=Classroom)
def update_classroom(classroom_id: str, payload: ClassroomCreate, actor: Actor = Depends(get_actor)) -> Classroom:
    return catalogue.update_classroom(classroom_id, payload, actor)


@app.delete("/classrooms/{classroom_id}")
def delete_classroom(classroom_id: str, actor: Actor = Depends(get_actor)) -> Response:
    catalogue.delete_classroom(classroom_id, actor)
    return Response(status_code=204)
