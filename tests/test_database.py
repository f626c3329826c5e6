import pytest

from carematch.database import InMemoryKeyValueDatabase, MarketplaceDatabase
from carematch.models import AccountStatus, BookingStatus
from conftest import NOW, at


def test_key_value_basics() -> None:
    db: InMemoryKeyValueDatabase[str, int] = InMemoryKeyValueDatabase()
    db.put("a", 1)
    db.put_many({"b": 2, "c": 3})

    assert db.get("a") == 1
    assert sorted(db.all()) == [1, 2, 3]
    assert db.insert_if_absent("a", 9) is False
    assert db.insert_if_absent("d", 4) is True

    assert db.get("a") == 1
    assert db.get("missing") is None


def test_typed_getters_ignore_other_records(database: MarketplaceDatabase, make_caregiver) -> None:
    make_caregiver("amani")

    assert database.caregiver("amani") is not None
    assert database.account("amani") is None
    assert database.booking("amani") is None
    assert database.caregiver_for_account("acct-amani").id == "amani"


def test_bookings_for_caregiver_filters_and_orders(database, make_booking) -> None:
    make_booking("amani", at(14), at(15))
    make_booking("amani", at(9), at(10), status=BookingStatus.PENDING)
    make_booking("baraka", at(9), at(10))

    assert [b.start for b in database.bookings_for_caregiver("amani")] == [at(9), at(14)]
    assert [
        b.start
        for b in database.bookings_for_caregiver("amani", BookingStatus.ACCEPTED)
    ] == [at(14)]


def test_insert_booking_if_no_overlap(database, make_booking) -> None:
    accepted = make_booking("amani", at(10), at(11))
    candidate = accepted.model_copy(
        update={"id": "new", "status": BookingStatus.PENDING, "start": at(10, 30), "end": at(11, 30)}
    )

    assert database.insert_booking_if_no_overlap(candidate) == accepted
    assert database.booking("new") is None

    later = candidate.model_copy(update={"start": at(11), "end": at(12)})
    assert database.insert_booking_if_no_overlap(later) is None
    assert database.booking("new") == later


def test_set_booking_status_if_is_compare_and_set(database, make_booking) -> None:
    pending = make_booking("amani", at(10), at(11), status=BookingStatus.PENDING)

    updated, conflict = database.set_booking_status_if(
        pending.id, BookingStatus.PENDING, BookingStatus.REJECTED, NOW
    )
    assert updated.status == BookingStatus.REJECTED and conflict is None

    stale, conflict = database.set_booking_status_if(
        pending.id, BookingStatus.PENDING, BookingStatus.ACCEPTED, NOW
    )
    assert stale is None and conflict is None
    assert database.booking(pending.id).status == BookingStatus.REJECTED


@pytest.mark.parametrize(
    "expected_status, verified, written",
    [
        (AccountStatus.APPROVED, True, False),
        (AccountStatus.PENDING, False, False),
        (AccountStatus.REJECTED, False, False),
    ],
)
def test_set_verified_if_status_requires_current_status(
    database, make_caregiver, expected_status, verified, written
) -> None:
    make_caregiver("amani")

    assert (
        database.set_verified_if_status("amani", "acct-amani", expected_status, verified)
        is written
    )


def test_set_verified_if_status_writes_on_match(database, make_caregiver) -> None:
    make_caregiver("amani", verified=False, account_status=AccountStatus.APPROVED)

    assert database.set_verified_if_status(
        "amani", "acct-amani", AccountStatus.APPROVED, True
    )
    assert database.caregiver("amani").verified is True
