import logging
from datetime import date, datetime
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from common.cache import invalidate_dashboard

from . import audit, config, models, schemas
from .errors import ConflictError, InvalidRequestError, InvalidStateError, NotFoundError
from .transitions import run_with_retries, settle_checkout

logger = logging.getLogger(__name__)


# ---------- Hotels & rooms ----------


def create_hotel(db: Session, hotel_in: schemas.HotelCreate, owner_id: Optional[int] = None) -> models.Hotel:
    hotel = models.Hotel(owner_id=owner_id, **hotel_in.model_dump())
    db.add(hotel)
    db.commit()
    db.refresh(hotel)
    return hotel


def get_hotel(db: Session, hotel_id: int) -> models.Hotel:
    hotel = db.get(models.Hotel, hotel_id)
    if hotel is None:
        raise NotFoundError(f"Hotel {hotel_id} not found")
    return hotel


def list_hotels(db: Session) -> List[models.Hotel]:
    return db.query(models.Hotel).order_by(models.Hotel.created_at.desc(), models.Hotel.id.desc()).all()


def create_room(db: Session, hotel_id: int, room_in: schemas.RoomCreate) -> models.Room:
    """
    Create a room in a hotel.

    Raises
    ------
    NotFoundError
        If the hotel does not exist.
    InvalidRequestError
        If the room number is already used in this hotel.
    """
    get_hotel(db, hotel_id)
    existing = (
        db.query(models.Room)
        .filter(models.Room.hotel_id == hotel_id)
        .filter(models.Room.room_number == room_in.room_number)
        .first()
    )
    if existing:
        raise InvalidRequestError("Room with this number already exists")

    room = models.Room(hotel_id=hotel_id, **room_in.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    invalidate_dashboard(hotel_id)
    return room


def get_room(db: Session, room_id: int) -> models.Room:
    room = db.get(models.Room, room_id)
    if room is None:
        raise NotFoundError(f"Room {room_id} not found")
    return room


def list_rooms(db: Session, hotel_id: int) -> List[models.Room]:
    return (
        db.query(models.Room)
        .filter(models.Room.hotel_id == hotel_id)
        .order_by(models.Room.room_number)
        .all()
    )


def has_checked_in_guest(db: Session, room_id: int, ignore_booking_id: Optional[int] = None) -> bool:
    q = (
        db.query(models.Booking)
        .filter(models.Booking.room_id == room_id)
        .filter(models.Booking.status == models.BookingStatus.CHECKED_IN)
    )
    if ignore_booking_id is not None:
        q = q.filter(models.Booking.id != ignore_booking_id)
    return db.query(q.exists()).scalar()


def set_room_status(
    db: Session,
    room_id: int,
    new_status: models.RoomStatus,
    actor_id: Optional[int] = None,
    reason: Optional[str] = None,
    at: Optional[datetime] = None,
) -> models.Room:
    """
    Change a room's housekeeping status by hand.

    Rooms become occupied only through check-in, and a room with a
    checked-in guest is released only through checkout. Moving an occupied
    room to maintenance or cleaning is allowed; a later checkout then leaves
    that status in place.

    Raises
    ------
    NotFoundError
        If the room does not exist.
    InvalidStateError
        If the change would bypass check-in or checkout.
    """
    if new_status == models.RoomStatus.OCCUPIED:
        raise InvalidStateError("Rooms become occupied only through check-in")
    at = at or datetime.now()

    def operation() -> None:
        room = db.get(models.Room, room_id, populate_existing=True)
        if room is None:
            raise NotFoundError(f"Room {room_id} not found")
        old_status = room.status
        if old_status == new_status:
            return
        if new_status == models.RoomStatus.AVAILABLE and has_checked_in_guest(db, room_id):
            raise InvalidStateError(
                f"Room {room_id} has a checked-in guest; check the booking out instead"
            )

        changed = db.execute(
            update(models.Room)
            .where(models.Room.id == room_id, models.Room.status == old_status)
            .values(status=new_status, updated_at=at)
            .execution_options(synchronize_session=False)
        ).rowcount
        if changed == 0:
            raise InvalidStateError(f"Room {room_id} changed status concurrently")
        audit.record_room_status_change(
            db,
            room_id=room_id,
            old_status=old_status,
            new_status=new_status,
            reason=reason or "manual_status_change",
            changed_at=at,
            actor_id=actor_id,
        )

    run_with_retries(db, operation, f"status change of room {room_id}")
    room = get_room(db, room_id)
    invalidate_dashboard(room.hotel_id)
    return room


# ---------- Bookings ----------


def has_date_conflict(
    db: Session,
    room_id: int,
    check_in_date: date,
    check_out_date: date,
    ignore_booking_id: Optional[int] = None,
) -> bool:
    """
    Check if another live booking on the same room overlaps the stay.

    Overlaps are detected for all bookings in the given room where:
    - status is confirmed or checked_in
    - existing.check_out_date > check_in_date
    - existing.check_in_date < check_out_date

    A stay ending on a date may be followed by one starting that same date.
    """
    q = (
        db.query(models.Booking)
        .filter(models.Booking.room_id == room_id)
        .filter(
            models.Booking.status.in_(
                [models.BookingStatus.CONFIRMED, models.BookingStatus.CHECKED_IN]
            )
        )
        .filter(models.Booking.check_out_date > check_in_date)
        .filter(models.Booking.check_in_date < check_out_date)
    )
    if ignore_booking_id is not None:
        q = q.filter(models.Booking.id != ignore_booking_id)
    return db.query(q.exists()).scalar()


def ensure_dates_valid(check_in_date: date, check_out_date: date) -> None:
    if check_out_date <= check_in_date:
        raise InvalidRequestError("check_out_date must be after check_in_date")


def create_booking(db: Session, booking_in: schemas.BookingCreate) -> models.Booking:
    """
    Reserve a room for a guest.

    Behavior
    --------
    - Validates that check_out_date is after check_in_date.
    - Prices the stay at price_per_night x nights unless total_amount is given;
      the amount must be positive.
    - Rejects stays overlapping another confirmed or checked-in booking.
    - The new booking starts in status confirmed.

    Raises
    ------
    NotFoundError
        If the room does not exist.
    InvalidRequestError
        If the dates or amount are invalid, or the room is already booked.
    """
    room = get_room(db, booking_in.room_id)
    ensure_dates_valid(booking_in.check_in_date, booking_in.check_out_date)

    nights = (booking_in.check_out_date - booking_in.check_in_date).days
    total_amount = booking_in.total_amount
    if total_amount is None:
        total_amount = (room.price_per_night or 0) * nights
    if total_amount <= 0:
        raise InvalidRequestError("total_amount must be greater than 0")

    if has_date_conflict(db, room.id, booking_in.check_in_date, booking_in.check_out_date):
        raise InvalidRequestError("Room is already booked for this date range")

    booking = models.Booking(
        hotel_id=room.hotel_id,
        room_id=room.id,
        guest_name=booking_in.guest_name,
        guest_email=booking_in.guest_email,
        guest_phone=booking_in.guest_phone,
        check_in_date=booking_in.check_in_date,
        check_out_date=booking_in.check_out_date,
        total_amount=total_amount,
        status=models.BookingStatus.CONFIRMED,
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    return booking


def get_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.get(models.Booking, booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


def list_bookings(db: Session, hotel_id: int) -> List[models.Booking]:
    return (
        db.query(models.Booking)
        .filter(models.Booking.hotel_id == hotel_id)
        .order_by(models.Booking.created_at.desc(), models.Booking.id.desc())
        .all()
    )


def check_in(
    db: Session,
    booking_id: int,
    actor_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> models.Booking:
    """
    Check a guest in and mark the room occupied.

    The room update is conditional on the room not already being occupied,
    so of two check-ins racing on one room only the first commits.

    Raises
    ------
    NotFoundError
        If the booking or its room does not exist.
    InvalidStateError
        If the booking is not confirmed.
    ConflictError
        If the room already holds a checked-in guest.
    """
    at = at or datetime.now()

    def operation() -> None:
        booking = db.get(models.Booking, booking_id, populate_existing=True)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found")
        if booking.status != models.BookingStatus.CONFIRMED:
            raise InvalidStateError(
                f"Booking {booking_id} is {booking.status.value}; only confirmed bookings can be checked in"
            )
        room = db.get(models.Room, booking.room_id, populate_existing=True)
        if room is None:
            raise NotFoundError(f"Room {booking.room_id} referenced by booking {booking_id} not found")
        if room.status == models.RoomStatus.OCCUPIED or has_checked_in_guest(db, room.id, booking_id):
            _raise_conflict(room.id, booking_id)

        moved = db.execute(
            update(models.Booking)
            .where(
                models.Booking.id == booking_id,
                models.Booking.status == models.BookingStatus.CONFIRMED,
            )
            .values(status=models.BookingStatus.CHECKED_IN, actual_check_in=at, updated_at=at)
            .execution_options(synchronize_session=False)
        ).rowcount
        if moved == 0:
            raise InvalidStateError(f"Booking {booking_id} changed status concurrently")

        old_status = room.status
        occupied = db.execute(
            update(models.Room)
            .where(
                models.Room.id == room.id,
                models.Room.status != models.RoomStatus.OCCUPIED,
            )
            .values(status=models.RoomStatus.OCCUPIED, updated_at=at)
            .execution_options(synchronize_session=False)
        ).rowcount
        if occupied == 0:
            _raise_conflict(room.id, booking_id)

        audit.record_room_status_change(
            db,
            room_id=room.id,
            old_status=old_status,
            new_status=models.RoomStatus.OCCUPIED,
            reason=config.CHECK_IN_REASON,
            changed_at=at,
            actor_id=actor_id,
        )

    run_with_retries(db, operation, f"check-in of booking {booking_id}")
    logger.info("Checked in booking %s", booking_id)
    booking = get_booking(db, booking_id)
    invalidate_dashboard(booking.hotel_id)
    return booking


def _raise_conflict(room_id: int, booking_id: int) -> None:
    logger.error(
        "Audit alert: room %s already has a checked-in guest, refusing check-in of booking %s",
        room_id, booking_id,
    )
    raise ConflictError(f"Room {room_id} is already occupied by another checked-in booking")


def check_out(
    db: Session,
    booking_id: int,
    actor_id: Optional[int] = None,
    at: Optional[datetime] = None,
) -> models.Booking:
    """
    Manually check a guest out.

    Uses the same transition as the auto-checkout pass. A booking already
    checked out (for example by a concurrent auto-checkout) is returned
    unchanged.

    Raises
    ------
    NotFoundError
        If the booking or its room does not exist.
    InvalidStateError
        If the booking was never checked in.
    """
    at = at or datetime.now()
    outcome = settle_checkout(db, booking_id, at, automatic=False, actor_id=actor_id)
    if outcome.settled:
        logger.info("Checked out booking %s (room released: %s)", booking_id, outcome.room_released)
    else:
        logger.info("Booking %s was already checked out", booking_id)
    booking = get_booking(db, booking_id)
    if outcome.settled:
        invalidate_dashboard(booking.hotel_id)
    return booking


def cancel_booking(db: Session, booking_id: int, at: Optional[datetime] = None) -> models.Booking:
    """Cancel a booking that has not been checked in yet."""
    at = at or datetime.now()

    def operation() -> None:
        cancelled = db.execute(
            update(models.Booking)
            .where(
                models.Booking.id == booking_id,
                models.Booking.status == models.BookingStatus.CONFIRMED,
            )
            .values(status=models.BookingStatus.CANCELLED, updated_at=at)
            .execution_options(synchronize_session=False)
        ).rowcount
        if cancelled == 0:
            booking = db.get(models.Booking, booking_id, populate_existing=True)
            if booking is None:
                raise NotFoundError(f"Booking {booking_id} not found")
            raise InvalidStateError(
                f"Booking {booking_id} is {booking.status.value}; only confirmed bookings can be cancelled"
            )

    run_with_retries(db, operation, f"cancellation of booking {booking_id}")
    return get_booking(db, booking_id)


def check_availability(db: Session, room_id: int, check_in_date: date, check_out_date: date) -> bool:
    get_room(db, room_id)
    ensure_dates_valid(check_in_date, check_out_date)
    return not has_date_conflict(db, room_id, check_in_date, check_out_date)
