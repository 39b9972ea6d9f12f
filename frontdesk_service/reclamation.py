import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from common.cache import invalidate_dashboard

from . import models, schemas
from .errors import FrontDeskError
from .transitions import settle_checkout

logger = logging.getLogger(__name__)


def select_expired(db: Session, reference_time: datetime, hotel_id: Optional[int] = None) -> List[int]:
    """
    Return ids of checked-in bookings whose stay has expired.

    Mirrors ``expiry.is_expired`` as a query. Bookings in rooms with
    auto-checkout disabled are left alone; bookings whose room row is
    missing are still selected so the pass reports them as failures.
    """
    stmt = (
        select(models.Booking.id)
        .outerjoin(models.Room, models.Room.id == models.Booking.room_id)
        .where(models.Booking.status == models.BookingStatus.CHECKED_IN)
        .where(models.Booking.check_out_date <= reference_time.date())
        .where(or_(models.Room.id.is_(None), models.Room.auto_checkout_enabled.is_(True)))
        .order_by(models.Booking.id)
    )
    if hotel_id is not None:
        stmt = stmt.where(models.Booking.hotel_id == hotel_id)
    return list(db.execute(stmt).scalars())


def reclaim_expired(
    db: Session,
    reference_time: datetime,
    hotel_id: Optional[int] = None,
) -> schemas.ReclamationReport:
    """
    Check out every stay that has expired at ``reference_time``.

    Each selected booking is settled in its own transaction (booking,
    room and audit rows together). A booking that fails is rolled back,
    logged and listed in the report, and the pass moves on. Bookings
    settled concurrently by another writer are listed as skipped, so two
    overlapping passes never report the same booking as reclaimed.

    Running the pass again with the same or a later reference time is a
    no-op for everything already processed, since only bookings still
    checked in are selected.

    Parameters
    ----------
    db : Session
        Database session used for the whole pass.
    reference_time : datetime
        Checkout boundary to evaluate expiry against; written as the
        checkout timestamp.
    hotel_id : Optional[int]
        Restrict the pass to one hotel.

    Returns
    -------
    ReclamationReport
        Bookings reclaimed, skipped and failed.
    """
    report = schemas.ReclamationReport(reference_time=reference_time, hotel_id=hotel_id)
    batch = select_expired(db, reference_time, hotel_id)
    # release the read snapshot before the per-booking write transactions
    db.rollback()

    for booking_id in batch:
        try:
            outcome = settle_checkout(db, booking_id, reference_time, automatic=True)
        except (FrontDeskError, SQLAlchemyError) as exc:
            reason = exc.detail if isinstance(exc, FrontDeskError) else f"{type(exc).__name__}: {exc}"
            logger.warning("Auto-checkout of booking %s failed: %s", booking_id, reason)
            report.failures.append(schemas.ReclamationFailure(booking_id=booking_id, reason=reason))
            continue

        if outcome.settled:
            report.booking_ids.append(booking_id)
            if outcome.room_released:
                report.rooms_released += 1
        else:
            report.skipped_booking_ids.append(booking_id)

    report.reclaimed_count = len(report.booking_ids)
    if report.reclaimed_count:
        invalidate_dashboard(hotel_id)

    logger.info(
        "Auto-checkout at %s%s: %d reclaimed, %d rooms released, %d skipped, %d failed",
        reference_time.isoformat(),
        f" (hotel {hotel_id})" if hotel_id is not None else "",
        report.reclaimed_count,
        report.rooms_released,
        len(report.skipped_booking_ids),
        len(report.failures),
    )
    return report
