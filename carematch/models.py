"""
Domain models shared by matching, booking and verification.
"""

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class GeoPoint(BaseModel):
    """
    Validated longitude/latitude pair.

    Accepts `[lng, lat]`, `{"type": "Point", "coordinates": [lng, lat]}`
    or `{"lng": ..., "lat": ...}`. Frozen, so it can never be half-filled.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["Point"] = "Point"
    lng: float = Field(ge=-180.0, le=180.0)
    lat: float = Field(ge=-90.0, le=90.0)

    @model_validator(mode="before")
    @classmethod
    def _from_coordinates(cls, data):
        if isinstance(data, (list, tuple)):
            if len(data) != 2:
                raise ValueError("location must be [lng, lat]")
            return {"lng": data[0], "lat": data[1]}
        if isinstance(data, dict) and "coordinates" in data:
            coordinates = data["coordinates"]
            if not isinstance(coordinates, (list, tuple)) or len(coordinates) != 2:
                raise ValueError("coordinates must be [lng, lat]")
            return {
                "type": data.get("type", "Point"),
                "lng": coordinates[0],
                "lat": coordinates[1],
            }
        return data

    @property
    def coordinates(self) -> tuple[float, float]:
        return (self.lng, self.lat)


class ActorRole(StrEnum):
    CAREGIVER = "caregiver"
    SEEKER = "seeker"
    ADMIN = "admin"
    SYSTEM = "system"  # internal transitions, never a logged-in caller


class AccountStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Account(BaseModel):
    id: str
    username: str
    email: str
    role: ActorRole
    status: AccountStatus = AccountStatus.PENDING  # source of truth for verified


class CaregiverProfile(BaseModel):
    id: str
    account_id: str
    full_name: str
    location: GeoPoint
    verified: bool = False  # written only by verification
    hourly_rate: float = Field(default=0.0, ge=0)
    specializations: list[str] = Field(default_factory=list)
    qualifications: list[str] = Field(default_factory=list)
    services_offered: list[str] = Field(default_factory=list)
    availability_days: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    bio: str = ""

    def offers(self, service: str) -> bool:
        wanted = service.strip().casefold()
        return any(s.strip().casefold() == wanted for s in self.services_offered)


class SeekerQuery(BaseModel):
    location: GeoPoint
    care_type: str = ""
    schedule: str = ""
    special_needs: str = ""
    radius_km: float | None = Field(default=None, gt=0)


class BookingStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {BookingStatus.REJECTED, BookingStatus.COMPLETED, BookingStatus.CANCELLED}
)


class ServiceLocation(BaseModel):
    address: str = Field(min_length=1)
    point: GeoPoint


class Booking(BaseModel):
    id: str
    caregiver_id: str
    seeker_id: str  # seeker account id
    start: datetime
    end: datetime
    service: str
    price: float
    location: ServiceLocation
    notes: str | None = None
    status: BookingStatus = BookingStatus.PENDING
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def overlaps(self, start: datetime, end: datetime) -> bool:
        # half-open: [start, end)
        return self.start < end and self.end > start


class Review(BaseModel):
    id: str
    booking_id: str
    caregiver_id: str
    seeker_id: str
    rating: int = Field(ge=1, le=5)
    comment: str = Field(min_length=1)
    created_at: datetime


class BookingEvent(BaseModel):
    booking_id: str
    old_status: BookingStatus | None  # None on creation
    new_status: BookingStatus
    occurred_at: datetime


class Principal(BaseModel):
    account_id: str
    role: ActorRole


class Mismatch(BaseModel):
    account_id: str
    caregiver_id: str
    account_status: AccountStatus
    verified_before: bool
    verified_after: bool


class ReconciliationReport(BaseModel):
    checked: int = 0
    corrected_count: int = 0
    mismatches: list[Mismatch] = Field(default_factory=list)
    orphaned: list[str] = Field(default_factory=list)
    flagged_accounts: list[str] = Field(default_factory=list)
