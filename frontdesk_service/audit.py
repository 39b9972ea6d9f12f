from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from . import models
from .config import AUTO_CHECKOUT_LOG_LIMIT


# Writers only stage rows on the session; the caller's transaction commits them
# together with the booking/room change they describe.


def record_auto_checkout(
    db: Session,
    hotel_id: int,
    room_id: int,
    booking_id: Optional[int],
    checkout_time: datetime,
    reason: str,
) -> models.AutoCheckoutLog:
    entry = models.AutoCheckoutLog(
        hotel_id=hotel_id,
        room_id=room_id,
        booking_id=booking_id,
        checkout_time=checkout_time,
        reason=reason,
        created_at=checkout_time,
    )
    db.add(entry)
    return entry


def record_room_status_change(
    db: Session,
    room_id: int,
    old_status: Optional[models.RoomStatus],
    new_status: models.RoomStatus,
    reason: str,
    changed_at: datetime,
    actor_id: Optional[int] = None,
) -> models.RoomStatusHistory:
    entry = models.RoomStatusHistory(
        room_id=room_id,
        old_status=old_status,
        new_status=new_status,
        changed_by=actor_id,
        change_reason=reason,
        created_at=changed_at,
    )
    db.add(entry)
    return entry


def recent_auto_checkouts(
    db: Session,
    hotel_id: int,
    limit: int = AUTO_CHECKOUT_LOG_LIMIT,
) -> List[models.AutoCheckoutLog]:
    """
    Return the auto-checkout entries for a hotel, most recent first.

    Parameters
    ----------
    db : Session
        Database session.
    hotel_id : int
        Hotel whose log to read.
    limit : int
        Maximum number of entries to return.

    Returns
    -------
    List[AutoCheckoutLog]
        Entries ordered by checkout_time descending.
    """
    return (
        db.query(models.AutoCheckoutLog)
        .filter(models.AutoCheckoutLog.hotel_id == hotel_id)
        .order_by(models.AutoCheckoutLog.checkout_time.desc(), models.AutoCheckoutLog.id.desc())
        .limit(limit)
        .all()
    )


def room_history(
    db: Session,
    room_id: int,
    limit: int = AUTO_CHECKOUT_LOG_LIMIT,
) -> List[models.RoomStatusHistory]:
    """Return status changes for one room, most recent first."""
    return (
        db.query(models.RoomStatusHistory)
        .filter(models.RoomStatusHistory.room_id == room_id)
        .order_by(models.RoomStatusHistory.created_at.desc(), models.RoomStatusHistory.id.desc())
        .limit(limit)
        .all()
    )
