import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Dict, List, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from . import audit, config, dashboard, frontdesk, schemas
from .auth import require_roles
from .database import Base, SessionLocal, engine, get_db
from .errors import FrontDeskError
from .rate_limiter import booking_rate_limiter
from .reclamation import reclaim_expired
from .scheduler import AutoCheckoutScheduler

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# Create tables
Base.metadata.create_all(bind=engine)

scheduler = AutoCheckoutScheduler(SessionLocal)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.SCHEDULER_ENABLED:
        scheduler.start()
    yield
    if config.SCHEDULER_ENABLED:
        scheduler.stop()


app = FastAPI(title="Front Desk Service", version="1.0.0", lifespan=lifespan)
router_v1 = APIRouter(prefix="/api/v1")

SERVICE_NAME = "frontdesk"


def error_body(request: Request, status_code: int, detail) -> Dict:
    return {
        "service": SERVICE_NAME,
        "path": request.url.path,
        "method": request.method,
        "status_code": status_code,
        "detail": detail,
    }


@app.exception_handler(FrontDeskError)
async def frontdesk_exception_handler(request: Request, exc: FrontDeskError):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.status_code, exc.detail),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(request, exc.status_code, exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=error_body(request, 500, "Internal server error"),
    )


@app.get("/")
def root():
    """
    Health-check endpoint for the Front Desk service.

    Returns
    -------
    dict
        A small JSON payload indicating that the service is running.
    """
    return {"service": SERVICE_NAME, "status": "running"}


owner_only = require_roles("owner")
desk_roles = require_roles("owner", "front_desk")
audit_roles = require_roles("owner", "auditor")
trigger_roles = require_roles("owner", "service_account")

viewer_roles = require_roles(
    "owner",
    "front_desk",
    "auditor",
    "service_account",  # dashboards and schedulers in other services
)


# ---------- Hotels ----------


@router_v1.post("/hotels", response_model=schemas.HotelRead, status_code=status.HTTP_201_CREATED)
def create_hotel(
    hotel_in: schemas.HotelCreate,
    db: Session = Depends(get_db),
    claims: Dict = Depends(owner_only),
):
    """
    Register a hotel owned by the caller.

    Access
    ------
    - Allowed roles: owner.
    """
    return frontdesk.create_hotel(db, hotel_in, owner_id=claims["user_id"])


@router_v1.get("/hotels", response_model=List[schemas.HotelRead])
def list_hotels(db: Session = Depends(get_db), _: Dict = Depends(viewer_roles)):
    return frontdesk.list_hotels(db)


# ---------- Rooms ----------


@router_v1.post(
    "/hotels/{hotel_id}/rooms",
    response_model=schemas.RoomRead,
    status_code=status.HTTP_201_CREATED,
)
def create_room(
    hotel_id: int,
    room_in: schemas.RoomCreate,
    db: Session = Depends(get_db),
    _: Dict = Depends(owner_only),
):
    """
    Create a room in a hotel.

    Access
    ------
    - Allowed roles: owner.

    Raises
    ------
    HTTPException
        404 if the hotel does not exist, 400 if the room number is taken.
    """
    return frontdesk.create_room(db, hotel_id, room_in)


@router_v1.get("/hotels/{hotel_id}/rooms", response_model=List[schemas.RoomRead])
def list_rooms(hotel_id: int, db: Session = Depends(get_db), _: Dict = Depends(viewer_roles)):
    frontdesk.get_hotel(db, hotel_id)
    return frontdesk.list_rooms(db, hotel_id)


@router_v1.put("/rooms/{room_id}/status", response_model=schemas.RoomRead)
def update_room_status(
    room_id: int,
    update_data: schemas.RoomStatusUpdate,
    db: Session = Depends(get_db),
    claims: Dict = Depends(desk_roles),
):
    """
    Change a room's housekeeping status (available, maintenance, cleaning).

    Access
    ------
    - Allowed roles: owner, front_desk.

    Raises
    ------
    HTTPException
        409 when setting 'occupied' directly, or 'available' while a guest
        is checked in.
    """
    return frontdesk.set_room_status(
        db,
        room_id,
        update_data.status,
        actor_id=claims["user_id"],
        reason=update_data.reason,
    )


@router_v1.get("/rooms/{room_id}/history", response_model=List[schemas.RoomStatusHistoryRead])
def room_history(
    room_id: int,
    limit: int = Query(default=config.AUTO_CHECKOUT_LOG_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db),
    _: Dict = Depends(audit_roles),
):
    frontdesk.get_room(db, room_id)
    return audit.room_history(db, room_id, limit)


# ---------- Bookings ----------


@router_v1.get("/bookings/availability", response_model=schemas.Availability)
def check_availability(
    room_id: int,
    check_in_date: date,
    check_out_date: date,
    db: Session = Depends(get_db),
    _: Dict = Depends(viewer_roles),
):
    """
    Check if a room is free for a date range.

    Raises
    ------
    HTTPException
        400 if check_out_date is not after check_in_date, 404 if the room
        does not exist.
    """
    available = frontdesk.check_availability(db, room_id, check_in_date, check_out_date)
    return {"room_id": room_id, "available": available}


@router_v1.post(
    "/bookings",
    response_model=schemas.BookingRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(booking_rate_limiter)],
)
def create_booking(
    booking_in: schemas.BookingCreate,
    db: Session = Depends(get_db),
    _: Dict = Depends(desk_roles),
):
    """
    Create a confirmed booking.

    Access
    ------
    - Allowed roles: owner, front_desk.

    Behavior
    --------
    - Validates that check_out_date is after check_in_date.
    - Prices the stay from the room rate unless total_amount is given.
    - Rejects stays overlapping a confirmed or checked-in booking.
    """
    return frontdesk.create_booking(db, booking_in)


@router_v1.get("/hotels/{hotel_id}/bookings", response_model=List[schemas.BookingRead])
def list_bookings(hotel_id: int, db: Session = Depends(get_db), _: Dict = Depends(viewer_roles)):
    frontdesk.get_hotel(db, hotel_id)
    return frontdesk.list_bookings(db, hotel_id)


@router_v1.post(
    "/bookings/{booking_id}/check-in",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def check_in(booking_id: int, db: Session = Depends(get_db), claims: Dict = Depends(desk_roles)):
    """
    Check a guest in.

    Raises
    ------
    HTTPException
        404 if the booking is missing, 409 if it is not confirmed or the
        room is already occupied.
    """
    return frontdesk.check_in(db, booking_id, actor_id=claims["user_id"])


@router_v1.post(
    "/bookings/{booking_id}/check-out",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def check_out(booking_id: int, db: Session = Depends(get_db), claims: Dict = Depends(desk_roles)):
    """
    Check a guest out by hand.

    A booking already checked out (e.g. by auto-checkout) is returned as is.

    Raises
    ------
    HTTPException
        404 if the booking is missing, 409 if it was never checked in.
    """
    return frontdesk.check_out(db, booking_id, actor_id=claims["user_id"])


@router_v1.post(
    "/bookings/{booking_id}/cancel",
    response_model=schemas.BookingRead,
    dependencies=[Depends(booking_rate_limiter)],
)
def cancel_booking(booking_id: int, db: Session = Depends(get_db), _: Dict = Depends(desk_roles)):
    return frontdesk.cancel_booking(db, booking_id)


# ---------- Auto-checkout ----------


@router_v1.post("/reclamations", response_model=schemas.ReclamationReport)
def trigger_auto_checkout(
    request_in: Optional[schemas.ReclamationRequest] = None,
    db: Session = Depends(get_db),
    _: Dict = Depends(trigger_roles),
):
    """
    Run the auto-checkout pass on demand.

    Uses the same entry point as the daily scheduler. Safe to call while
    the scheduled pass or front desk operations are running.

    Access
    ------
    - Allowed roles: owner, service_account.
    """
    request_in = request_in or schemas.ReclamationRequest()
    reference_time = request_in.reference_time or datetime.now()
    return reclaim_expired(db, reference_time, request_in.hotel_id)


@router_v1.get("/hotels/{hotel_id}/auto-checkout-logs", response_model=List[schemas.AutoCheckoutLogRead])
def auto_checkout_logs(
    hotel_id: int,
    limit: int = Query(default=config.AUTO_CHECKOUT_LOG_LIMIT, ge=1, le=500),
    db: Session = Depends(get_db),
    _: Dict = Depends(audit_roles),
):
    """
    Auto-checkout history for a hotel, most recent first.

    Access
    ------
    - Allowed roles: owner, auditor.
    """
    frontdesk.get_hotel(db, hotel_id)
    return audit.recent_auto_checkouts(db, hotel_id, limit)


@router_v1.get("/hotels/{hotel_id}/dashboard", response_model=schemas.DashboardStats)
def hotel_dashboard(
    hotel_id: int,
    day: Optional[date] = None,
    db: Session = Depends(get_db),
    _: Dict = Depends(audit_roles),
):
    return dashboard.dashboard_stats(db, hotel_id, day or date.today())


app.include_router(router_v1)


def run() -> None:
    """Serve the app with uvicorn on HOST:PORT."""
    uvicorn.run(app, host=config.HOST, port=config.PORT, log_level=config.LOG_LEVEL.lower())


if __name__ == "__main__":
    run()
