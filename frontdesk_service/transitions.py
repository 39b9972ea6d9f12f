import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from . import audit, config, models
from .errors import InvalidStateError, NotFoundError, TransientStoreError
from .expiry import is_expired

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CheckoutOutcome:
    """
    Result of one checkout transition attempt.

    Attributes
    ----------
    booking_id : int
        Booking the transition targeted.
    settled : bool
        True if this call moved the booking to checked_out. False if a
        concurrent writer already did, or (automatic only) the stay has not
        expired yet.
    room_released : bool
        True if the room went from occupied to available in this call.
    note : str
        Short explanation when nothing was settled.
    """
    booking_id: int
    settled: bool
    room_released: bool = False
    note: Optional[str] = None


def run_with_retries(db: Session, operation: Callable[[], T], description: str) -> T:
    """
    Run ``operation`` and commit it as one transaction.

    Lock contention and connectivity failures (``OperationalError``) roll the
    transaction back and are retried with exponential backoff, up to
    ``TRANSITION_MAX_ATTEMPTS`` attempts in total. Any other error rolls back
    and propagates unchanged.

    Raises
    ------
    TransientStoreError
        If every attempt failed with ``OperationalError``.
    """
    attempt = 1
    while True:
        try:
            result = operation()
            db.commit()
            return result
        except OperationalError as exc:
            db.rollback()
            if attempt >= config.TRANSITION_MAX_ATTEMPTS:
                raise TransientStoreError(
                    f"{description} failed after {attempt} attempts: {exc.orig}"
                ) from exc
            delay = config.TRANSITION_RETRY_BACKOFF_SECONDS * (2 ** (attempt - 1))
            logger.warning(
                "%s hit a store error (attempt %d/%d), retrying in %.2fs",
                description, attempt, config.TRANSITION_MAX_ATTEMPTS, delay,
            )
            time.sleep(delay)
            attempt += 1
        except Exception:
            db.rollback()
            raise


def settle_checkout(
    db: Session,
    booking_id: int,
    at: datetime,
    automatic: bool,
    actor_id: Optional[int] = None,
) -> CheckoutOutcome:
    """
    Check a booking out and release its room in one transaction.

    Shared by manual checkout and the auto-checkout pass so the Room/Booking
    invariant is preserved identically on both paths. Every write is a
    conditional update on the current status, so when two writers race on
    the same booking exactly one of them performs the transition and the
    other observes it as already settled.

    Parameters
    ----------
    db : Session
        Database session; committed or rolled back by this call.
    booking_id : int
        Booking to check out.
    at : datetime
        Checkout timestamp, written to actual_check_out and last_checkout.
    automatic : bool
        True for the auto-checkout pass. Skips stays that have not expired
        at ``at``, marks the booking auto_checkout and appends an
        AutoCheckoutLog entry.
    actor_id : Optional[int]
        User performing a manual checkout; None for the system.

    Returns
    -------
    CheckoutOutcome
        What this call changed.

    Raises
    ------
    NotFoundError
        If the booking or its room does not exist.
    InvalidStateError
        If the booking is confirmed or cancelled.
    TransientStoreError
        If the store kept failing after bounded retries.
    """
    return run_with_retries(
        db,
        lambda: _settle_once(db, booking_id, at, automatic, actor_id),
        f"checkout of booking {booking_id}",
    )


def _settle_once(
    db: Session,
    booking_id: int,
    at: datetime,
    automatic: bool,
    actor_id: Optional[int],
) -> CheckoutOutcome:
    booking = db.get(models.Booking, booking_id, populate_existing=True)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    if automatic and booking.status == models.BookingStatus.CHECKED_IN and not is_expired(booking, at):
        return CheckoutOutcome(booking_id=booking_id, settled=False, note="stay has not expired")

    result = db.execute(
        update(models.Booking)
        .where(
            models.Booking.id == booking_id,
            models.Booking.status == models.BookingStatus.CHECKED_IN,
        )
        .values(
            status=models.BookingStatus.CHECKED_OUT,
            actual_check_out=at,
            auto_checkout=automatic,
            updated_at=at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return _explain_unsettled(db, booking_id)

    room = db.get(models.Room, booking.room_id, populate_existing=True)
    if room is None:
        raise NotFoundError(
            f"Room {booking.room_id} referenced by booking {booking_id} not found"
        )

    # A room already moved to maintenance/cleaning keeps that status.
    released = db.execute(
        update(models.Room)
        .where(
            models.Room.id == room.id,
            models.Room.status == models.RoomStatus.OCCUPIED,
        )
        .values(status=models.RoomStatus.AVAILABLE, last_checkout=at, updated_at=at)
        .execution_options(synchronize_session=False)
    ).rowcount == 1

    if automatic:
        audit.record_auto_checkout(
            db,
            hotel_id=booking.hotel_id,
            room_id=room.id,
            booking_id=booking.id,
            checkout_time=at,
            reason=config.AUTO_CHECKOUT_REASON,
        )
    if released:
        audit.record_room_status_change(
            db,
            room_id=room.id,
            old_status=models.RoomStatus.OCCUPIED,
            new_status=models.RoomStatus.AVAILABLE,
            reason=config.AUTO_CHECKOUT_HISTORY_REASON if automatic else config.MANUAL_CHECKOUT_REASON,
            changed_at=at,
            actor_id=None if automatic else actor_id,
        )

    return CheckoutOutcome(booking_id=booking_id, settled=True, room_released=released)


def _explain_unsettled(db: Session, booking_id: int) -> CheckoutOutcome:
    current = db.execute(
        select(models.Booking.status).where(models.Booking.id == booking_id)
    ).scalar_one_or_none()

    if current is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    if current == models.BookingStatus.CHECKED_OUT:
        return CheckoutOutcome(booking_id=booking_id, settled=False, note="already checked out")
    raise InvalidStateError(
        f"Booking {booking_id} is {current.value}; only checked_in bookings can be checked out"
    )
