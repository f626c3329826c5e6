"""
Booking creation, status transitions, reviews, and the per-account listings.

Status protocol (actor must own the booking's side):

    caregiver   pending  -> accepted | rejected
    seeker      pending | accepted -> cancelled
    system      accepted -> completed   (autoComplete: end has passed)

rejected, completed and cancelled are terminal. Accepted bookings of one
caregiver never overlap; both creation and acceptance check this atomically
in the database.
"""

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

import pydantic
from pydantic import BaseModel

from carematch.database import MarketplaceDatabase
from carematch.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from carematch.logger import get_logger
from carematch.models import (
    ActorRole,
    Booking,
    BookingEvent,
    BookingStatus,
    CaregiverProfile,
    Principal,
    Review,
    ServiceLocation,
)

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]
IdFactory = Callable[[], str]

CENT = Decimal("0.01")

ALLOWED_TRANSITIONS: dict[ActorRole, dict[BookingStatus, frozenset[BookingStatus]]] = {
    ActorRole.CAREGIVER: {
        BookingStatus.PENDING: frozenset(
            {BookingStatus.ACCEPTED, BookingStatus.REJECTED}
        ),
    },
    ActorRole.SEEKER: {
        BookingStatus.PENDING: frozenset({BookingStatus.CANCELLED}),
        BookingStatus.ACCEPTED: frozenset({BookingStatus.CANCELLED}),
    },
    ActorRole.SYSTEM: {
        BookingStatus.ACCEPTED: frozenset({BookingStatus.COMPLETED}),
    },
}

UPCOMING_STATUSES = frozenset({BookingStatus.PENDING, BookingStatus.ACCEPTED})


def as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def hours_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 3600


def compute_price(start: datetime, end: datetime, hourly_rate: float) -> float:
    """Hours times rate, rounded half-up to the cent."""
    price = Decimal(str(hours_between(start, end))) * Decimal(str(hourly_rate))
    return float(price.quantize(CENT, rounding=ROUND_HALF_UP))


def _new_id() -> str:
    return uuid4().hex


class Quote(BaseModel):
    caregiver: CaregiverProfile
    price: float


class ConflictDetector:
    def __init__(self, database: MarketplaceDatabase, now_fn: NowFn) -> None:
        self.database = database
        self.now_fn = now_fn

    def check_available(
        self,
        caregiver_id: str,
        start: datetime,
        end: datetime,
        requested_service: str,
    ) -> Quote:
        """
        Raise unless the caregiver can take `[start, end)` for the service;
        otherwise quote the price. Checks run in a fixed order so the first
        failing rule is the one reported.
        """
        start, end = as_utc(start), as_utc(end)
        if end <= start:
            raise ValidationError(
                "end time must be after start time",
                start=start.isoformat(),
                end=end.isoformat(),
            )
        if start < self.now_fn():
            raise ValidationError("cannot book in the past", start=start.isoformat())

        caregiver = self.database.caregiver(caregiver_id)
        if caregiver is None:
            raise NotFoundError("caregiver not found", caregiver_id=caregiver_id)
        if not caregiver.verified:
            raise ValidationError(
                "caregiver is not verified", caregiver_id=caregiver_id
            )
        if not caregiver.offers(requested_service):
            raise ValidationError(
                "caregiver does not provide this service",
                caregiver_id=caregiver_id,
                service=requested_service,
            )

        conflict = next(
            (
                b
                for b in self.database.bookings_for_caregiver(
                    caregiver_id, BookingStatus.ACCEPTED
                )
                if b.overlaps(start, end)
            ),
            None,
        )
        if conflict is not None:
            raise ConflictError(
                "caregiver is not available at this time",
                caregiver_id=caregiver_id,
                conflicting_booking_id=conflict.id,
            )

        return Quote(
            caregiver=caregiver,
            price=compute_price(start, end, caregiver.hourly_rate),
        )


class BookingLifecycle:
    def __init__(self, database: MarketplaceDatabase, now_fn: NowFn) -> None:
        self.database = database
        self.now_fn = now_fn

    @staticmethod
    def is_allowed(
        role: ActorRole, current: BookingStatus, target: BookingStatus
    ) -> bool:
        return target in ALLOWED_TRANSITIONS.get(role, {}).get(current, frozenset())

    def owns(self, actor: Principal, booking: Booking) -> bool:
        if actor.role == ActorRole.SEEKER:
            return booking.seeker_id == actor.account_id
        if actor.role == ActorRole.CAREGIVER:
            caregiver = self.database.caregiver(booking.caregiver_id)
            return caregiver is not None and caregiver.account_id == actor.account_id
        return False

    def load(self, booking_id: str) -> Booking:
        booking = self.database.booking(booking_id)
        if booking is None:
            raise NotFoundError("booking not found", booking_id=booking_id)
        return booking

    def transition(
        self, booking_id: str, actor: Principal, target: BookingStatus
    ) -> tuple[Booking, BookingEvent]:
        if target == BookingStatus.PENDING:
            raise ValidationError("bookings cannot be moved back to pending")
        if actor.role == ActorRole.SYSTEM and target == BookingStatus.COMPLETED:
            return self.auto_complete(booking_id)

        booking = self.load(booking_id)
        log = get_logger(__name__, booking_id=booking_id, actor=actor.account_id)

        if not self.owns(actor, booking):
            log.info("rejected transition: actor does not own booking")
            raise AuthorizationError(
                "not authorized for this booking", booking_id=booking_id
            )
        if not self.is_allowed(actor.role, booking.status, target):
            log.info(
                "rejected transition %s -> %s for %s",
                booking.status,
                target,
                actor.role,
            )
            raise AuthorizationError(
                f"{actor.role} may not move a {booking.status} booking to {target}",
                booking_id=booking_id,
                status=booking.status,
                target=target,
            )

        return self._apply(booking, target)

    def auto_complete(self, booking_id: str) -> tuple[Booking, BookingEvent]:
        """System transition accepted -> completed once the booking has ended."""
        booking = self.load(booking_id)
        if not self.is_allowed(ActorRole.SYSTEM, booking.status, BookingStatus.COMPLETED):
            raise AuthorizationError(
                f"a {booking.status} booking cannot be auto-completed",
                booking_id=booking_id,
                status=booking.status,
            )
        if not booking.end < self.now_fn():
            raise ValidationError(
                "booking has not ended yet",
                booking_id=booking_id,
                end=booking.end.isoformat(),
            )
        return self._apply(booking, BookingStatus.COMPLETED)

    def _apply(
        self, booking: Booking, target: BookingStatus
    ) -> tuple[Booking, BookingEvent]:
        now = self.now_fn()
        updated, conflict = self.database.set_booking_status_if(
            booking.id,
            booking.status,
            target,
            now,
            exclusive=target == BookingStatus.ACCEPTED,
        )
        if conflict is not None:
            raise ConflictError(
                "caregiver already has an accepted booking at this time",
                booking_id=booking.id,
                conflicting_booking_id=conflict.id,
            )
        if updated is None:
            raise ConflictError(
                "booking status changed concurrently", booking_id=booking.id
            )

        logger.info(
            "booking %s: %s -> %s", booking.id, booking.status, updated.status
        )
        return updated, BookingEvent(
            booking_id=booking.id,
            old_status=booking.status,
            new_status=updated.status,
            occurred_at=now,
        )


class BookingService:
    def __init__(
        self,
        database: MarketplaceDatabase,
        now_fn: NowFn,
        id_factory: IdFactory = _new_id,
    ) -> None:
        self.database = database
        self.now_fn = now_fn
        self.id_factory = id_factory
        self.detector = ConflictDetector(database, now_fn)
        self.lifecycle = BookingLifecycle(database, now_fn)

    def create_booking(
        self,
        caregiver_id: str,
        seeker_id: str,
        start: datetime,
        end: datetime,
        service: str,
        location: ServiceLocation,
        notes: str | None = None,
    ) -> tuple[Booking, BookingEvent]:
        start, end = as_utc(start), as_utc(end)
        quote = self.detector.check_available(caregiver_id, start, end, service)

        now = self.now_fn()
        booking = Booking(
            id=self.id_factory(),
            caregiver_id=caregiver_id,
            seeker_id=seeker_id,
            start=start,
            end=end,
            service=service,
            price=quote.price,
            location=location,
            notes=notes,
            created_at=now,
            updated_at=now,
        )

        # an acceptance may have landed since the check above
        conflict = self.database.insert_booking_if_no_overlap(booking)
        if conflict is not None:
            raise ConflictError(
                "caregiver is not available at this time",
                caregiver_id=caregiver_id,
                conflicting_booking_id=conflict.id,
            )

        logger.info(
            "booking %s created for caregiver %s (%s, %.2f)",
            booking.id,
            caregiver_id,
            service,
            booking.price,
        )
        return booking, BookingEvent(
            booking_id=booking.id,
            old_status=None,
            new_status=booking.status,
            occurred_at=now,
        )

    def transition(
        self, booking_id: str, actor: Principal, target: BookingStatus
    ) -> tuple[Booking, BookingEvent]:
        return self.lifecycle.transition(booking_id, actor, target)

    def get_booking(self, booking_id: str, viewer: Principal) -> Booking:
        booking = self.lifecycle.load(booking_id)
        if viewer.role != ActorRole.ADMIN and not self.lifecycle.owns(viewer, booking):
            raise AuthorizationError(
                "not authorized for this booking", booking_id=booking_id
            )
        return booking

    def seeker_bookings(self, seeker: Principal) -> list[Booking]:
        """The seeker's own bookings, latest start first."""
        if seeker.role != ActorRole.SEEKER:
            raise AuthorizationError("not authorized as care seeker", role=seeker.role)
        return self.database.bookings_for_seeker(seeker.account_id)

    def _own_profile(self, caregiver: Principal) -> CaregiverProfile:
        if caregiver.role != ActorRole.CAREGIVER:
            raise AuthorizationError(
                "not authorized as caregiver", role=caregiver.role
            )
        profile = self.database.caregiver_for_account(caregiver.account_id)
        if profile is None:
            raise NotFoundError(
                "caregiver profile not found", account_id=caregiver.account_id
            )
        return profile

    def upcoming_bookings(self, caregiver: Principal) -> list[Booking]:
        """Pending or accepted bookings that have not started yet, soonest first."""
        profile = self._own_profile(caregiver)
        now = self.now_fn()
        return [
            b
            for b in self.database.bookings_for_caregiver(profile.id)
            if b.status in UPCOMING_STATUSES and b.start > now
        ]

    def caregiver_reviews(self, caregiver: Principal) -> list[Review]:
        return self.database.reviews_for_caregiver(self._own_profile(caregiver).id)

    def reviews_for_caregiver(self, caregiver_id: str) -> list[Review]:
        if self.database.caregiver(caregiver_id) is None:
            raise NotFoundError("caregiver not found", caregiver_id=caregiver_id)
        return self.database.reviews_for_caregiver(caregiver_id)

    def create_review(
        self, booking_id: str, seeker: Principal, rating: int, comment: str
    ) -> tuple[Review, list[BookingEvent]]:
        """
        File the single review of a completed booking. An accepted booking
        whose end has passed is auto-completed first.
        """
        booking = self.lifecycle.load(booking_id)
        if seeker.role != ActorRole.SEEKER or not self.lifecycle.owns(seeker, booking):
            raise AuthorizationError(
                "not authorized to review this booking", booking_id=booking_id
            )
        if self.database.review(booking_id) is not None:
            raise ConflictError(
                "review already exists for this booking", booking_id=booking_id
            )

        try:
            review = Review(
                id=self.id_factory(),
                booking_id=booking.id,
                caregiver_id=booking.caregiver_id,
                seeker_id=seeker.account_id,
                rating=rating,
                comment=comment,
                created_at=self.now_fn(),
            )
        except pydantic.ValidationError as exc:
            raise ValidationError("invalid review", errors=exc.errors()) from exc

        events = []
        if (
            booking.status == BookingStatus.ACCEPTED
            and booking.end < self.now_fn()
        ):
            booking, event = self.lifecycle.auto_complete(booking.id)
            events.append(event)

        if booking.status != BookingStatus.COMPLETED:
            raise ValidationError(
                "can only review completed bookings",
                booking_id=booking_id,
                status=booking.status,
            )
        if not self.database.insert_review_if_absent(review):
            raise ConflictError(
                "review already exists for this booking", booking_id=booking_id
            )

        logger.info("review filed for booking %s (rating %d)", booking_id, rating)
        return review, events
