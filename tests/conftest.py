from datetime import UTC, datetime, timedelta
from itertools import count

import pytest

from carematch.database import MarketplaceDatabase
from carematch.models import (
    Account,
    AccountStatus,
    ActorRole,
    Booking,
    BookingStatus,
    CaregiverProfile,
    GeoPoint,
    ServiceLocation,
)

NOW = datetime(2025, 7, 1, 8, 0, 0, tzinfo=UTC)
NAIROBI = GeoPoint(lng=36.82, lat=-1.29)
MOMBASA = GeoPoint(lng=39.66, lat=-4.04)
HOME = ServiceLocation(address="12 Ngong Rd, Nairobi", point=NAIROBI)


def at(hour: int, minute: int = 0, *, day: int = 2) -> datetime:
    return datetime(2025, 7, day, hour, minute, tzinfo=UTC)


@pytest.fixture
def database() -> MarketplaceDatabase:
    return MarketplaceDatabase()


@pytest.fixture
def make_caregiver(database: MarketplaceDatabase):
    """Add an account plus caregiver profile; the account status follows `verified`."""

    def _make(
        caregiver_id: str,
        *,
        verified: bool = True,
        location: GeoPoint = NAIROBI,
        account_status: AccountStatus | None = None,
        **fields,
    ) -> CaregiverProfile:
        if account_status is None:
            account_status = (
                AccountStatus.APPROVED if verified else AccountStatus.PENDING
            )
        account = Account(
            id=f"acct-{caregiver_id}",
            username=caregiver_id,
            email=f"{caregiver_id}@example.com",
            role=ActorRole.CAREGIVER,
            status=account_status,
        )
        fields.setdefault("services_offered", ["elderly care"])
        fields.setdefault("hourly_rate", 10.0)
        caregiver = CaregiverProfile(
            id=caregiver_id,
            account_id=account.id,
            full_name=caregiver_id.title(),
            location=location,
            verified=verified,
            **fields,
        )
        database.add(account)
        database.add(caregiver)
        return caregiver

    return _make


@pytest.fixture
def make_booking(database: MarketplaceDatabase):
    ids = count(1)

    def _make(
        caregiver_id: str,
        start: datetime,
        end: datetime,
        *,
        status: BookingStatus = BookingStatus.ACCEPTED,
        seeker_id: str = "seeker-1",
        booking_id: str | None = None,
    ) -> Booking:
        booking = Booking(
            id=booking_id or f"booking-{next(ids)}",
            caregiver_id=caregiver_id,
            seeker_id=seeker_id,
            start=start,
            end=end,
            service="elderly care",
            price=10.0 * (end - start) / timedelta(hours=1),
            location=HOME,
            status=status,
            created_at=NOW,
            updated_at=NOW,
        )
        database.add(booking)
        return booking

    return _make
