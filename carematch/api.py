import asyncio
import logging
from collections import Counter
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, field_validator

from carematch.booking import BookingService
from carematch.config import Settings
from carematch.database import MarketplaceDatabase
from carematch.errors import (
    AuthorizationError,
    ConflictError,
    DomainError,
    NotFoundError,
    ValidationError,
)
from carematch.logger import configure_logging
from carematch.matching import MatchEngine
from carematch.models import (
    ActorRole,
    Booking,
    BookingEvent,
    BookingStatus,
    GeoPoint,
    Principal,
    SeekerQuery,
    ServiceLocation,
)
from carematch.notifier import publish_booking_event, send_email
from carematch.relevance import RelevanceRanker
from carematch.verification import VerificationService, run_reconciliation_schedule

logger = logging.getLogger(__name__)

router = APIRouter()

NowFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]

STATUS_BY_ERROR: dict[type[DomainError], int] = {
    ValidationError: 400,
    AuthorizationError: 403,
    NotFoundError: 404,
    ConflictError: 409,
}

CALLER_ROLES = {ActorRole.CAREGIVER, ActorRole.SEEKER, ActorRole.ADMIN}


class MatchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location: GeoPoint
    care_type: str = Field(default="", alias="careType")
    schedule: str = ""
    special_needs: str = Field(default="", alias="specialNeeds")
    radius_km: float | None = Field(default=None, gt=0, alias="radiusKm")

    @field_validator("care_type", "schedule", "special_needs", mode="before")
    @classmethod
    def _null_as_empty(cls, value: object) -> object:
        return "" if value is None else value


class BookingLocationRequest(BaseModel):
    address: str = Field(min_length=1)
    coordinates: GeoPoint


class CreateBookingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    caregiver_id: str = Field(alias="caregiverId")
    start: datetime
    end: datetime
    service: str = Field(min_length=1)
    notes: str | None = None
    location: BookingLocationRequest


class TransitionRequest(BaseModel):
    status: BookingStatus


class CreateReviewRequest(BaseModel):
    booking: str
    rating: int
    comment: str


def get_principal(
    x_account_id: Annotated[str | None, Header()] = None,
    x_account_role: Annotated[str | None, Header()] = None,
) -> Principal:
    """Identity resolved upstream by the auth layer, passed in as headers."""
    if not x_account_id or x_account_role not in CALLER_ROLES:
        raise HTTPException(status_code=401, detail="Unknown caller")
    return Principal(account_id=x_account_id, role=ActorRole(x_account_role))


CurrentPrincipal = Annotated[Principal, Depends(get_principal)]


def require_role(principal: Principal, role: ActorRole) -> None:
    if principal.role != role:
        raise AuthorizationError(f"requires role {role}", role=principal.role)


def _database(request: Request) -> MarketplaceDatabase:
    return request.app.state.database


def _booking_service(request: Request) -> BookingService:
    return BookingService(_database(request), now_fn=request.app.state.now_fn)


def _verification_service(state) -> VerificationService:
    return VerificationService(
        state.database,
        flag_threshold=state.settings.consistency_flag_threshold,
        violation_counts=state.violation_counts,
    )


async def _deliver(*notifications: Awaitable[None]) -> None:
    results = await asyncio.gather(*notifications, return_exceptions=True)
    for result in results:
        if isinstance(result, Exception):
            logger.warning("notification delivery failed", exc_info=result)


def _booking_body(booking: Booking) -> dict:
    return booking.model_dump(mode="json")


async def _publish(*events: BookingEvent) -> None:
    await _deliver(*(publish_booking_event(e) for e in events))


@router.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/match")
async def match_caregivers(body: MatchRequest, request: Request) -> list[dict]:
    settings: Settings = request.app.state.settings
    engine = MatchEngine(
        _database(request),
        RelevanceRanker(settings.vocabulary),
        radius_km=settings.search_radius_km,
        limit=settings.match_limit,
    )
    query = SeekerQuery(
        location=body.location,
        care_type=body.care_type,
        schedule=body.schedule,
        special_needs=body.special_needs,
        radius_km=body.radius_km,
    )

    return [
        {
            "caregiver_id": r.caregiver.id,
            "full_name": r.caregiver.full_name,
            "hourly_rate": r.caregiver.hourly_rate,
            "location": r.caregiver.location.model_dump(),
            "score": r.score,
            "distance_km": round(r.distance_km, 3),
        }
        for r in engine.match(query)
    ]


@router.post("/bookings")
async def create_booking(
    body: CreateBookingRequest, principal: CurrentPrincipal, request: Request
) -> dict:
    require_role(principal, ActorRole.SEEKER)

    booking, event = _booking_service(request).create_booking(
        caregiver_id=body.caregiver_id,
        seeker_id=principal.account_id,
        start=body.start,
        end=body.end,
        service=body.service,
        location=ServiceLocation(
            address=body.location.address, point=body.location.coordinates
        ),
        notes=body.notes,
    )
    await _publish(event)
    return _booking_body(booking)


@router.get("/bookings/{booking_id}")
async def get_booking(
    booking_id: str, principal: CurrentPrincipal, request: Request
) -> dict:
    return _booking_body(_booking_service(request).get_booking(booking_id, principal))


@router.put("/bookings/{booking_id}/status")
async def transition_booking(
    booking_id: str,
    body: TransitionRequest,
    principal: CurrentPrincipal,
    request: Request,
) -> dict:
    booking, event = _booking_service(request).transition(
        booking_id, principal, body.status
    )
    await _publish(event)
    return _booking_body(booking)


@router.post("/reviews")
async def create_review(
    body: CreateReviewRequest, principal: CurrentPrincipal, request: Request
) -> dict:
    review, events = _booking_service(request).create_review(
        body.booking, principal, body.rating, body.comment
    )
    await _publish(*events)
    return review.model_dump(mode="json")


@router.get("/care-seekers/bookings")
async def list_seeker_bookings(
    principal: CurrentPrincipal, request: Request
) -> list[dict]:
    return [
        _booking_body(b)
        for b in _booking_service(request).seeker_bookings(principal)
    ]


@router.get("/caregivers/bookings/upcoming")
async def list_upcoming_bookings(
    principal: CurrentPrincipal, request: Request
) -> list[dict]:
    return [
        _booking_body(b)
        for b in _booking_service(request).upcoming_bookings(principal)
    ]


@router.get("/caregivers/reviews")
async def list_own_reviews(principal: CurrentPrincipal, request: Request) -> list[dict]:
    return [
        r.model_dump(mode="json")
        for r in _booking_service(request).caregiver_reviews(principal)
    ]


@router.get("/caregivers/{caregiver_id}/reviews")
async def list_caregiver_reviews(caregiver_id: str, request: Request) -> list[dict]:
    """Public: no caller identity needed."""
    return [
        r.model_dump(mode="json")
        for r in _booking_service(request).reviews_for_caregiver(caregiver_id)
    ]


@router.put("/admin/caregivers/{account_id}/approve")
async def approve_caregiver(
    account_id: str, principal: CurrentPrincipal, request: Request
) -> dict:
    require_role(principal, ActorRole.ADMIN)
    account, caregiver = _verification_service(request.app.state).approve(account_id)

    await _deliver(
        send_email(
            account.email, "caregiver_approved", {"username": account.username}
        )
    )
    return {
        "account_id": account.id,
        "status": account.status,
        "caregiver_id": caregiver.id,
        "verified": caregiver.verified,
    }


@router.put("/admin/caregivers/{account_id}/reject")
async def reject_caregiver(
    account_id: str, principal: CurrentPrincipal, request: Request
) -> dict:
    require_role(principal, ActorRole.ADMIN)
    account, caregiver = _verification_service(request.app.state).reject(account_id)

    await _deliver(
        send_email(
            account.email, "caregiver_rejected", {"username": account.username}
        )
    )
    return {
        "account_id": account.id,
        "status": account.status,
        "caregiver_id": caregiver.id,
        "verified": caregiver.verified,
    }


@router.post("/admin/reconcile")
async def reconcile(principal: CurrentPrincipal, request: Request) -> dict:
    require_role(principal, ActorRole.ADMIN)
    report = _verification_service(request.app.state).reconcile()
    return report.model_dump(mode="json")


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    status_code = next(
        (code for cls, code in STATUS_BY_ERROR.items() if isinstance(exc, cls)),
        500,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: Settings = app.state.settings
    if settings.reconcile_interval_seconds > 0:
        task = asyncio.create_task(
            run_reconciliation_schedule(
                _verification_service(app.state),
                interval_seconds=settings.reconcile_interval_seconds,
                sleep_fn=app.state.sleep_fn,
            )
        )
        app.state.background_tasks.add(task)
        task.add_done_callback(app.state.background_tasks.discard)

    yield

    tasks = list(app.state.background_tasks)
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


def create_app(
    settings: Settings | None = None,
    database: MarketplaceDatabase | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database if database is not None else MarketplaceDatabase()

    app.state.now_fn = lambda: datetime.now(UTC)
    app.state.sleep_fn = asyncio.sleep

    app.state.background_tasks = set()
    app.state.violation_counts = Counter()

    app.add_exception_handler(DomainError, domain_error_handler)
    app.include_router(router)
    return app
