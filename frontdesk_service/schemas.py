from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .models import BookingStatus, PaymentStatus, RoomStatus


# ---------- Hotels ----------


class HotelCreate(BaseModel):
    """Schema for registering a hotel."""
    name: str = Field(..., min_length=1, max_length=120)
    address: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=40)
    email: Optional[EmailStr] = None
    checkout_time: time = time(10, 0)


class HotelRead(HotelCreate):
    id: int
    owner_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Rooms ----------


class RoomBase(BaseModel):
    """
    Base schema for room information.

    Shared fields used across room create and read operations.
    """
    room_number: str = Field(..., min_length=1, max_length=20)
    room_type: str = Field(default="standard", max_length=40)
    price_per_night: float = Field(default=0, ge=0)
    max_occupancy: int = Field(default=2, ge=1)
    amenities: Optional[str] = Field(default=None, max_length=255)
    auto_checkout_enabled: bool = True


class RoomCreate(RoomBase):
    pass


class RoomRead(RoomBase):
    """
    Schema returned when reading room information.

    Extends RoomBase with identifiers, status and the last checkout time.
    """
    id: int
    hotel_id: int
    status: RoomStatus
    last_checkout: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RoomStatusUpdate(BaseModel):
    """Manual housekeeping status change for a room."""
    status: RoomStatus
    reason: Optional[str] = Field(default=None, max_length=255)


class RoomStatusHistoryRead(BaseModel):
    id: int
    room_id: int
    old_status: Optional[RoomStatus] = None
    new_status: RoomStatus
    changed_by: Optional[int] = None
    change_reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------- Bookings ----------


class BookingCreate(BaseModel):
    """
    Schema for creating a new booking.

    total_amount may be omitted; it then defaults to the room's nightly rate
    times the number of nights.
    """
    room_id: int = Field(..., ge=1)
    guest_name: str = Field(..., min_length=1, max_length=120)
    guest_email: Optional[EmailStr] = None
    guest_phone: Optional[str] = Field(default=None, max_length=40)
    check_in_date: date
    check_out_date: date
    total_amount: Optional[float] = None


class BookingRead(BaseModel):
    """Schema returned when reading booking information."""
    id: int
    hotel_id: int
    room_id: int
    guest_name: str
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    check_in_date: date
    check_out_date: date
    actual_check_in: Optional[datetime] = None
    actual_check_out: Optional[datetime] = None
    status: BookingStatus
    total_amount: float
    payment_status: PaymentStatus
    auto_checkout: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Availability(BaseModel):
    room_id: int
    available: bool


# ---------- Auto-checkout ----------


class ReclamationRequest(BaseModel):
    """
    Manual trigger for the auto-checkout pass.

    reference_time defaults to the current local time; hotel_id restricts
    the pass to one hotel.
    """
    reference_time: Optional[datetime] = None
    hotel_id: Optional[int] = Field(default=None, ge=1)

    @field_validator("reference_time")
    @classmethod
    def to_local_naive(cls, v: Optional[datetime]) -> Optional[datetime]:
        """
        Convert an offset-aware reference time to naive local time.

        Stored timestamps are naive local times, so an aware value would
        otherwise be shifted by the database session timezone.
        """
        if v is not None and v.tzinfo is not None:
            v = v.astimezone().replace(tzinfo=None)
        return v


class ReclamationFailure(BaseModel):
    booking_id: int
    reason: str


class ReclamationReport(BaseModel):
    """
    Outcome of one auto-checkout pass.

    Attributes
    ----------
    reference_time : datetime
        Time the pass evaluated expiry against.
    hotel_id : Optional[int]
        Hotel the pass was scoped to, if any.
    reclaimed_count : int
        Number of bookings this pass checked out.
    booking_ids : List[int]
        Bookings this pass checked out.
    rooms_released : int
        Rooms moved from occupied to available by this pass.
    skipped_booking_ids : List[int]
        Bookings selected but already settled by a concurrent writer.
    failures : List[ReclamationFailure]
        Bookings that could not be processed and why.
    """
    reference_time: datetime
    hotel_id: Optional[int] = None
    reclaimed_count: int = 0
    booking_ids: List[int] = Field(default_factory=list)
    rooms_released: int = 0
    skipped_booking_ids: List[int] = Field(default_factory=list)
    failures: List[ReclamationFailure] = Field(default_factory=list)


class AutoCheckoutLogRead(BaseModel):
    id: int
    hotel_id: int
    room_id: int
    booking_id: Optional[int] = None
    checkout_time: datetime
    reason: str

    model_config = ConfigDict(from_attributes=True)


class DashboardStats(BaseModel):
    hotel_id: int
    day: date
    total_rooms: int
    occupied_rooms: int
    available_rooms: int
    today_checkouts: int
    today_revenue: float
