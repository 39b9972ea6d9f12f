from datetime import datetime

from .models import Booking, BookingStatus


def is_expired(booking: Booking, reference_time: datetime) -> bool:
    """
    Decide whether a stay has run past its checkout date.

    A booking is expired when it is still checked in and its check-out date
    is on or before the reference date. A check-out date equal to the
    reference date counts as expired: checkout happens at the hotel's
    checkout boundary on that day, not at midnight.

    Parameters
    ----------
    booking : Booking
        Booking to evaluate. Only ``status`` and ``check_out_date`` are read.
    reference_time : datetime
        Evaluation time, already normalized to the hotel's local checkout
        boundary by the caller.

    Returns
    -------
    bool
        True if the booking must be reclaimed.
    """
    if booking.status != BookingStatus.CHECKED_IN:
        return False
    return booking.check_out_date <= reference_time.date()
