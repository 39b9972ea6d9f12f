from datetime import date, datetime, time, timedelta

from sqlalchemy import func
from sqlalchemy.orm import Session

from common.cache import dashboard_key, get_cached_json, set_cached_json

from . import config, models, schemas
from .frontdesk import get_hotel


def _day_bounds(day: date):
    start = datetime.combine(day, time.min)
    return start, start + timedelta(days=1)


def dashboard_stats(db: Session, hotel_id: int, day: date) -> schemas.DashboardStats:
    """
    Summarize a hotel's rooms and the day's checkouts for the owner dashboard.

    Parameters
    ----------
    db : Session
        Database session.
    hotel_id : int
        Hotel to summarize.
    day : date
        Calendar day for the checkout and revenue figures.

    Returns
    -------
    DashboardStats
        Room counts by status, auto-checkouts logged on ``day`` and the total
        amount of bookings checked out on ``day``.

    Raises
    ------
    NotFoundError
        If the hotel does not exist.
    """
    cache_key = dashboard_key(hotel_id, day)
    cached = get_cached_json(cache_key)
    if cached is not None:
        return schemas.DashboardStats.model_validate(cached)

    get_hotel(db, hotel_id)
    start, end = _day_bounds(day)

    counts = dict(
        db.query(models.Room.status, func.count(models.Room.id))
        .filter(models.Room.hotel_id == hotel_id)
        .group_by(models.Room.status)
        .all()
    )

    today_checkouts = (
        db.query(func.count(models.AutoCheckoutLog.id))
        .filter(models.AutoCheckoutLog.hotel_id == hotel_id)
        .filter(models.AutoCheckoutLog.checkout_time >= start)
        .filter(models.AutoCheckoutLog.checkout_time < end)
        .scalar()
    )

    today_revenue = (
        db.query(func.coalesce(func.sum(models.Booking.total_amount), 0))
        .filter(models.Booking.hotel_id == hotel_id)
        .filter(models.Booking.status == models.BookingStatus.CHECKED_OUT)
        .filter(models.Booking.actual_check_out >= start)
        .filter(models.Booking.actual_check_out < end)
        .scalar()
    )

    stats = schemas.DashboardStats(
        hotel_id=hotel_id,
        day=day,
        total_rooms=sum(counts.values()),
        occupied_rooms=counts.get(models.RoomStatus.OCCUPIED, 0),
        available_rooms=counts.get(models.RoomStatus.AVAILABLE, 0),
        today_checkouts=today_checkouts or 0,
        today_revenue=float(today_revenue or 0),
    )
    set_cached_json(cache_key, stats.model_dump(mode="json"), ttl_seconds=config.DASHBOARD_CACHE_TTL_SECONDS)
    return stats
