from collections.abc import Mapping, MutableMapping
from datetime import datetime
from threading import RLock
from typing import Generic, TypeVar

from carematch.models import (
    Account,
    AccountStatus,
    Booking,
    BookingStatus,
    CaregiverProfile,
    Review,
)

K = TypeVar("K")
V = TypeVar("V")

Record = Account | CaregiverProfile | Booking | Review


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database.

    Every method runs under one re-entrant lock, so each call is atomic
    with respect to every other call, from any thread or task.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}
        self._lock = RLock()

    def put(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def put_many(self, items: Mapping[K, V]) -> None:
        """Write several keys as one unit; readers see all or none of them."""
        with self._lock:
            self._store.update(items)

    def insert_if_absent(self, key: K, value: V) -> bool:
        with self._lock:
            if key in self._store:
                return False
            self._store[key] = value
            return True

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._store.get(key)

    def all(self) -> list[V]:
        with self._lock:
            return list(self._store.values())


class MarketplaceDatabase(InMemoryKeyValueDatabase[str, Record]):
    """
    Key layout: `account:{id}`, `caregiver:{id}`, `booking:{id}`,
    `review:{booking_id}` (one review per booking by construction).
    """

    def add(self, record: Record) -> None:
        self.put(self.key_for(record), record)

    @staticmethod
    def key_for(record: Record) -> str:
        if isinstance(record, Account):
            return f"account:{record.id}"
        if isinstance(record, CaregiverProfile):
            return f"caregiver:{record.id}"
        if isinstance(record, Booking):
            return f"booking:{record.id}"
        return f"review:{record.booking_id}"

    def account(self, account_id: str) -> Account | None:
        value = self.get(f"account:{account_id}")
        return value if isinstance(value, Account) else None

    def caregiver(self, caregiver_id: str) -> CaregiverProfile | None:
        value = self.get(f"caregiver:{caregiver_id}")
        return value if isinstance(value, CaregiverProfile) else None

    def booking(self, booking_id: str) -> Booking | None:
        value = self.get(f"booking:{booking_id}")
        return value if isinstance(value, Booking) else None

    def review(self, booking_id: str) -> Review | None:
        value = self.get(f"review:{booking_id}")
        return value if isinstance(value, Review) else None

    def caregivers(self) -> list[CaregiverProfile]:
        return [c for c in self.all() if isinstance(c, CaregiverProfile)]

    def verified_caregivers(self) -> list[CaregiverProfile]:
        return [c for c in self.caregivers() if c.verified]

    def caregiver_for_account(self, account_id: str) -> CaregiverProfile | None:
        return next(
            (c for c in self.caregivers() if c.account_id == account_id), None
        )

    def bookings_for_caregiver(
        self, caregiver_id: str, status: BookingStatus | None = None
    ) -> list[Booking]:
        return sorted(
            (
                b
                for b in self.all()
                if isinstance(b, Booking)
                and b.caregiver_id == caregiver_id
                and (status is None or b.status == status)
            ),
            key=lambda b: b.start,
        )

    def bookings_for_seeker(self, seeker_id: str) -> list[Booking]:
        """Latest start first."""
        return sorted(
            (
                b
                for b in self.all()
                if isinstance(b, Booking) and b.seeker_id == seeker_id
            ),
            key=lambda b: b.start,
            reverse=True,
        )

    def reviews_for_caregiver(self, caregiver_id: str) -> list[Review]:
        """Newest first."""
        return sorted(
            (
                r
                for r in self.all()
                if isinstance(r, Review) and r.caregiver_id == caregiver_id
            ),
            key=lambda r: r.created_at,
            reverse=True,
        )

    def _accepted_overlap(
        self, caregiver_id: str, start: datetime, end: datetime, *, exclude: str
    ) -> Booking | None:
        return next(
            (
                b
                for b in self.bookings_for_caregiver(
                    caregiver_id, BookingStatus.ACCEPTED
                )
                if b.id != exclude and b.overlaps(start, end)
            ),
            None,
        )

    def insert_booking_if_no_overlap(self, booking: Booking) -> Booking | None:
        """
        Atomically insert a booking unless the caregiver already has an
        accepted booking overlapping it. Returns the conflicting booking,
        or None when the insert happened.
        """
        with self._lock:
            conflict = self._accepted_overlap(
                booking.caregiver_id, booking.start, booking.end, exclude=booking.id
            )
            if conflict is not None:
                return conflict
            self.add(booking)
            return None

    def set_booking_status_if(
        self,
        booking_id: str,
        expected: BookingStatus,
        new: BookingStatus,
        updated_at: datetime,
        *,
        exclusive: bool = False,
    ) -> tuple[Booking | None, Booking | None]:
        """
        Atomically move a booking from `expected` to `new`.

        Returns (updated, conflicting). `updated` is None when the booking is
        missing or no longer in `expected`, or when `exclusive` is set and
        another accepted booking of the same caregiver overlaps it; that
        booking is then returned as `conflicting`.
        """
        with self._lock:
            booking = self.booking(booking_id)
            if booking is None or booking.status != expected:
                return None, None
            if exclusive:
                conflict = self._accepted_overlap(
                    booking.caregiver_id, booking.start, booking.end, exclude=booking.id
                )
                if conflict is not None:
                    return None, conflict
            updated = booking.model_copy(
                update={"status": new, "updated_at": updated_at}
            )
            self.add(updated)
            return updated, None

    def insert_review_if_absent(self, review: Review) -> bool:
        return self.insert_if_absent(self.key_for(review), review)

    def write_verification(
        self, account: Account, caregiver: CaregiverProfile
    ) -> None:
        self.put_many(
            {self.key_for(account): account, self.key_for(caregiver): caregiver}
        )

    def set_verified_if_status(
        self,
        caregiver_id: str,
        account_id: str,
        expected_status: AccountStatus,
        verified: bool,
    ) -> bool:
        """
        Set a profile's verified flag only if the owning account still has
        `expected_status`. Returns True when the flag was written.
        """
        with self._lock:
            account = self.account(account_id)
            caregiver = self.caregiver(caregiver_id)
            if account is None or caregiver is None:
                return False
            if account.status != expected_status or caregiver.verified == verified:
                return False
            self.add(caregiver.model_copy(update={"verified": verified}))
            return True
