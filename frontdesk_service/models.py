from datetime import datetime, time
from enum import Enum as PyEnum

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)

from .database import Base


class RoomStatus(str, PyEnum):
    """
    Enumeration of possible room statuses.

    Values
    ------
    available
        Room is free and can be checked into.
    occupied
        Exactly one booking for the room is checked in.
    maintenance
        Room is temporarily out of service.
    cleaning
        Room is being prepared by housekeeping.
    """
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    CLEANING = "cleaning"


class BookingStatus(str, PyEnum):
    """
    Enumeration of possible booking statuses.

    Values
    ------
    confirmed
        Booking is reserved but the guest has not arrived yet.
    checked_in
        Guest is in the room.
    checked_out
        Stay has ended, either manually or by auto-checkout.
    cancelled
        Booking was cancelled before check-in.
    """
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


class Hotel(Base):
    """
    SQLAlchemy model representing a hotel.

    Attributes
    ----------
    id : int
        Primary key.
    name : str
        Display name of the hotel.
    owner_id : int
        Identifier of the owning user (issued by the auth layer).
    checkout_time : time
        Local time-of-day at which expired stays are auto-checked-out.
    """
    __tablename__ = "hotels"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False)
    owner_id = Column(Integer, nullable=True, index=True)
    address = Column(String(255), nullable=True)
    phone = Column(String(40), nullable=True)
    email = Column(String(120), nullable=True)
    checkout_time = Column(Time, nullable=False, default=time(10, 0))
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)


class Room(Base):
    """
    SQLAlchemy model representing a hotel room.

    Attributes
    ----------
    id : int
        Primary key.
    hotel_id : int
        Owning hotel.
    room_number : str
        Room label, unique within a hotel (e.g. '101').
    status : RoomStatus
        Current occupancy / housekeeping status.
    price_per_night : float
        Nightly rate used to price bookings.
    max_occupancy : int
        Maximum number of guests.
    auto_checkout_enabled : bool
        Whether the daily auto-checkout may reclaim this room.
    last_checkout : datetime
        Timestamp of the most recent checkout, if any.
    """
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True)
    room_number = Column(String(20), nullable=False)
    room_type = Column(String(40), nullable=False, default="standard")
    status = Column(Enum(RoomStatus), nullable=False, default=RoomStatus.AVAILABLE, index=True)
    price_per_night = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    max_occupancy = Column(Integer, nullable=False, default=2)
    amenities = Column(String(255), nullable=True)  # comma-separated list
    last_checkout = Column(DateTime, nullable=True)
    auto_checkout_enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        UniqueConstraint("hotel_id", "room_number", name="uq_room_number_per_hotel"),
    )


class Booking(Base):
    """
    SQLAlchemy model representing a guest stay.

    Attributes
    ----------
    id : int
        Primary key.
    hotel_id, room_id : int
        Hotel and room the stay belongs to.
    check_in_date, check_out_date : date
        Requested calendar dates of the stay.
    actual_check_in, actual_check_out : datetime
        Set when the booking transitions to checked_in / checked_out.
    status : BookingStatus
        confirmed -> checked_in -> checked_out, or confirmed -> cancelled.
    auto_checkout : bool
        True when the checkout was performed by the reclamation pass.
    """
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False, index=True)
    guest_name = Column(String(120), nullable=False)
    guest_email = Column(String(120), nullable=True)
    guest_phone = Column(String(40), nullable=True)
    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)
    actual_check_in = Column(DateTime, nullable=True)
    actual_check_out = Column(DateTime, nullable=True)
    status = Column(Enum(BookingStatus), nullable=False, default=BookingStatus.CONFIRMED, index=True)
    total_amount = Column(Numeric(10, 2, asdecimal=False), nullable=False, default=0)
    payment_status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    auto_checkout = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index("idx_bookings_check_dates", "check_in_date", "check_out_date"),
    )


class AutoCheckoutLog(Base):
    """
    Append-only record of one booking reclaimed by the auto-checkout pass.

    booking_id is nullable so the entry survives deletion of the booking.
    """
    __tablename__ = "auto_checkout_logs"

    id = Column(Integer, primary_key=True, index=True)
    hotel_id = Column(Integer, ForeignKey("hotels.id", ondelete="CASCADE"), nullable=False, index=True)
    room_id = Column(Integer, nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id", ondelete="SET NULL"), nullable=True)
    checkout_time = Column(DateTime, nullable=False)
    reason = Column(Text, nullable=False, default="daily_auto_checkout")
    created_at = Column(DateTime, default=datetime.now)


class RoomStatusHistory(Base):
    """
    Append-only record of a room status change. changed_by is None for
    system-initiated changes.
    """
    __tablename__ = "room_status_history"

    id = Column(Integer, primary_key=True, index=True)
    room_id = Column(Integer, nullable=False, index=True)
    old_status = Column(Enum(RoomStatus), nullable=True)
    new_status = Column(Enum(RoomStatus), nullable=False)
    changed_by = Column(Integer, nullable=True)
    change_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now)
