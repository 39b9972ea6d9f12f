from datetime import date, datetime

import pytest

from frontdesk_service.expiry import is_expired
from frontdesk_service.models import Booking, BookingStatus

REFERENCE = datetime(2024, 1, 10, 10, 0, 0)


def make_booking(status: BookingStatus, check_out_date: date) -> Booking:
    return Booking(
        guest_name="Guest",
        check_in_date=date(2024, 1, 5),
        check_out_date=check_out_date,
        status=status,
    )


def test_checkout_date_equal_to_reference_date_is_expired():
    booking = make_booking(BookingStatus.CHECKED_IN, date(2024, 1, 10))
    assert is_expired(booking, REFERENCE) is True


def test_checkout_date_before_reference_date_is_expired():
    booking = make_booking(BookingStatus.CHECKED_IN, date(2024, 1, 8))
    assert is_expired(booking, REFERENCE) is True


def test_checkout_date_after_reference_date_is_not_expired():
    booking = make_booking(BookingStatus.CHECKED_IN, date(2024, 1, 11))
    assert is_expired(booking, REFERENCE) is False


def test_time_of_day_does_not_matter_within_the_checkout_date():
    booking = make_booking(BookingStatus.CHECKED_IN, date(2024, 1, 10))
    assert is_expired(booking, datetime(2024, 1, 10, 0, 0, 1)) is True
    assert is_expired(booking, datetime(2024, 1, 9, 23, 59, 59)) is False


@pytest.mark.parametrize(
    "status",
    [BookingStatus.CONFIRMED, BookingStatus.CHECKED_OUT, BookingStatus.CANCELLED],
)
def test_only_checked_in_bookings_expire(status):
    booking = make_booking(status, date(2024, 1, 1))
    assert is_expired(booking, REFERENCE) is False
