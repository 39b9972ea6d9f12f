import threading
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import delete
from sqlalchemy.exc import OperationalError

from frontdesk_service import config, frontdesk, models, reclamation, schemas, transitions
from frontdesk_service.database import Base, SessionLocal, engine
from frontdesk_service.reclamation import reclaim_expired, select_expired
from frontdesk_service.transitions import settle_checkout

REFERENCE = datetime(2024, 1, 10, 10, 0, 0)
CHECKED_IN_AT = datetime(2024, 1, 8, 14, 0, 0)


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


def make_hotel(db, name="Sample Hotel"):
    return frontdesk.create_hotel(db, schemas.HotelCreate(name=name), owner_id=1)


def make_room(db, hotel, number="R101", auto_checkout_enabled=True):
    return frontdesk.create_room(
        db,
        hotel.id,
        schemas.RoomCreate(
            room_number=number,
            price_per_night=100.0,
            auto_checkout_enabled=auto_checkout_enabled,
        ),
    )


def make_stay(db, room, check_out_date=date(2024, 1, 10), guest="Guest"):
    booking = frontdesk.create_booking(
        db,
        schemas.BookingCreate(
            room_id=room.id,
            guest_name=guest,
            check_in_date=date(2024, 1, 8),
            check_out_date=check_out_date,
        ),
    )
    return frontdesk.check_in(db, booking.id, actor_id=7, at=CHECKED_IN_AT)


def auto_logs(db, booking_id=None):
    q = db.query(models.AutoCheckoutLog)
    if booking_id is not None:
        q = q.filter(models.AutoCheckoutLog.booking_id == booking_id)
    return q.all()


def releases(db, room_id):
    return (
        db.query(models.RoomStatusHistory)
        .filter(models.RoomStatusHistory.room_id == room_id)
        .filter(models.RoomStatusHistory.old_status == models.RoomStatus.OCCUPIED)
        .filter(models.RoomStatusHistory.new_status == models.RoomStatus.AVAILABLE)
        .all()
    )


def test_expired_stay_is_checked_out_and_audited(db):
    hotel = make_hotel(db)
    room = make_room(db, hotel, "R101")
    booking = make_stay(db, room)
    assert frontdesk.get_room(db, room.id).status == models.RoomStatus.OCCUPIED

    report = reclaim_expired(db, REFERENCE)

    assert report.reclaimed_count == 1
    assert report.booking_ids == [booking.id]
    assert report.rooms_released == 1
    assert report.failures == []

    booking = frontdesk.get_booking(db, booking.id)
    assert booking.status == models.BookingStatus.CHECKED_OUT
    assert booking.actual_check_out == REFERENCE
    assert booking.auto_checkout is True

    room = frontdesk.get_room(db, room.id)
    assert room.status == models.RoomStatus.AVAILABLE
    assert room.last_checkout == REFERENCE

    logs = auto_logs(db)
    assert len(logs) == 1
    assert (logs[0].hotel_id, logs[0].room_id, logs[0].booking_id) == (hotel.id, room.id, booking.id)
    assert logs[0].checkout_time == REFERENCE
    assert logs[0].reason == "daily_auto_checkout"

    history = releases(db, room.id)
    assert len(history) == 1
    assert history[0].changed_by is None
    assert history[0].change_reason == "auto_checkout_daily"


def test_second_pass_is_a_no_op(db):
    hotel = make_hotel(db)
    room = make_room(db, hotel)
    make_stay(db, room)

    first = reclaim_expired(db, REFERENCE)
    second = reclaim_expired(db, REFERENCE)
    later = reclaim_expired(db, REFERENCE + timedelta(days=1))

    assert first.reclaimed_count == 1
    for report in (second, later):
        assert report.reclaimed_count == 0
        assert report.booking_ids == []
        assert report.skipped_booking_ids == []
        assert report.failures == []
    assert len(auto_logs(db)) == 1
    assert len(releases(db, room.id)) == 1


def test_expiry_boundary(db):
    hotel = make_hotel(db)
    due_today = make_stay(db, make_room(db, hotel, "101"), check_out_date=date(2024, 1, 10))
    due_tomorrow = make_stay(db, make_room(db, hotel, "102"), check_out_date=date(2024, 1, 11))

    report = reclaim_expired(db, REFERENCE)

    assert report.booking_ids == [due_today.id]
    assert frontdesk.get_booking(db, due_tomorrow.id).status == models.BookingStatus.CHECKED_IN
    assert select_expired(db, REFERENCE) == []
    assert select_expired(db, REFERENCE + timedelta(days=1)) == [due_tomorrow.id]


def test_missing_room_is_reported_without_aborting_the_pass(db):
    hotel = make_hotel(db)
    rooms = [make_room(db, hotel, f"10{i}") for i in range(5)]
    bookings = [make_stay(db, room, guest=f"Guest {i}") for i, room in enumerate(rooms)]

    db.execute(delete(models.Room).where(models.Room.id == rooms[2].id))
    db.commit()

    report = reclaim_expired(db, REFERENCE)

    assert report.reclaimed_count == 4
    assert sorted(report.booking_ids) == sorted(b.id for i, b in enumerate(bookings) if i != 2)
    assert len(report.failures) == 1
    assert report.failures[0].booking_id == bookings[2].id
    assert "not found" in report.failures[0].reason

    # the failed transition was rolled back as a whole
    failed = frontdesk.get_booking(db, bookings[2].id)
    assert failed.status == models.BookingStatus.CHECKED_IN
    assert failed.actual_check_out is None
    assert auto_logs(db, bookings[2].id) == []
    assert len(auto_logs(db)) == 4


def test_room_moved_to_maintenance_keeps_its_status(db):
    hotel = make_hotel(db)
    room = make_room(db, hotel)
    booking = make_stay(db, room)
    frontdesk.set_room_status(db, room.id, models.RoomStatus.MAINTENANCE, actor_id=7)

    report = reclaim_expired(db, REFERENCE)

    assert report.booking_ids == [booking.id]
    assert report.rooms_released == 0
    assert frontdesk.get_booking(db, booking.id).status == models.BookingStatus.CHECKED_OUT
    room = frontdesk.get_room(db, room.id)
    assert room.status == models.RoomStatus.MAINTENANCE
    assert room.last_checkout is None
    assert len(auto_logs(db)) == 1
    assert releases(db, room.id) == []


def test_rooms_with_auto_checkout_disabled_are_left_alone(db):
    hotel = make_hotel(db)
    room = make_room(db, hotel, auto_checkout_enabled=False)
    booking = make_stay(db, room)

    report = reclaim_expired(db, REFERENCE)

    assert report.reclaimed_count == 0
    assert frontdesk.get_booking(db, booking.id).status == models.BookingStatus.CHECKED_IN
    assert frontdesk.get_room(db, room.id).status == models.RoomStatus.OCCUPIED


def test_pass_can_be_scoped_to_one_hotel(db):
    first = make_hotel(db, "First")
    second = make_hotel(db, "Second")
    in_first = make_stay(db, make_room(db, first, "101"))
    in_second = make_stay(db, make_room(db, second, "101"))

    report = reclaim_expired(db, REFERENCE, hotel_id=first.id)

    assert report.hotel_id == first.id
    assert report.booking_ids == [in_first.id]
    assert frontdesk.get_booking(db, in_second.id).status == models.BookingStatus.CHECKED_IN


def test_manual_checkout_between_selection_and_transition_wins_cleanly(db):
    hotel = make_hotel(db)
    room = make_room(db, hotel)
    booking = make_stay(db, room)

    batch = select_expired(db, REFERENCE)
    assert batch == [booking.id]

    other = SessionLocal()
    try:
        frontdesk.check_out(other, booking.id, actor_id=7, at=REFERENCE)
    finally:
        other.close()

    outcome = settle_checkout(db, booking.id, REFERENCE, automatic=True)

    assert outcome.settled is False
    assert outcome.note == "already checked out"
    booking = frontdesk.get_booking(db, booking.id)
    assert booking.auto_checkout is False
    assert auto_logs(db) == []
    assert len(releases(db, room.id)) == 1


def test_manual_checkout_after_auto_checkout_is_a_no_op(db):
    hotel = make_hotel(db)
    room = make_room(db, hotel)
    booking = make_stay(db, room)
    reclaim_expired(db, REFERENCE)

    result = frontdesk.check_out(db, booking.id, actor_id=7, at=REFERENCE + timedelta(hours=1))

    assert result.status == models.BookingStatus.CHECKED_OUT
    assert result.auto_checkout is True
    assert result.actual_check_out == REFERENCE
    assert len(auto_logs(db)) == 1
    assert len(releases(db, room.id)) == 1


def test_overlapping_passes_do_not_double_count(db, monkeypatch):
    hotel = make_hotel(db)
    room = make_room(db, hotel)
    booking = make_stay(db, room)

    stale_batch = select_expired(db, REFERENCE)
    first = reclaim_expired(db, REFERENCE)

    # second pass selected its batch before the first one committed
    monkeypatch.setattr(reclamation, "select_expired", lambda *args, **kwargs: list(stale_batch))
    second = reclaim_expired(db, REFERENCE)

    assert first.booking_ids == [booking.id]
    assert second.booking_ids == []
    assert second.skipped_booking_ids == [booking.id]
    assert second.failures == []
    assert len(auto_logs(db)) == 1


def test_racing_manual_checkout_and_pass_settle_exactly_once(db, monkeypatch):
    monkeypatch.setattr(config, "TRANSITION_MAX_ATTEMPTS", 20)
    hotel = make_hotel(db)
    room = make_room(db, hotel)
    booking = make_stay(db, room)
    booking_id, room_id = booking.id, room.id

    barrier = threading.Barrier(2)
    errors = []
    reports = []

    def manual():
        session = SessionLocal()
        try:
            barrier.wait()
            frontdesk.check_out(session, booking_id, actor_id=7, at=REFERENCE)
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    def automatic():
        session = SessionLocal()
        try:
            barrier.wait()
            reports.append(reclaim_expired(session, REFERENCE))
        except Exception as exc:
            errors.append(exc)
        finally:
            session.close()

    threads = [threading.Thread(target=manual), threading.Thread(target=automatic)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(30)

    assert errors == []
    assert reports[0].failures == []

    db.expire_all()
    result = frontdesk.get_booking(db, booking.id)
    assert result.status == models.BookingStatus.CHECKED_OUT
    assert len(releases(db, room.id)) == 1
    if result.auto_checkout:
        assert reports[0].booking_ids == [booking.id]
        assert len(auto_logs(db)) == 1
    else:
        assert reports[0].booking_ids == []
        assert auto_logs(db) == []


def test_store_errors_are_retried(db, monkeypatch):
    monkeypatch.setattr(config, "TRANSITION_RETRY_BACKOFF_SECONDS", 0)
    hotel = make_hotel(db)
    room = make_room(db, hotel)
    booking = make_stay(db, room)

    real_settle_once = transitions._settle_once
    calls = []

    def flaky(*args, **kwargs):
        calls.append(1)
        if len(calls) == 1:
            raise OperationalError("UPDATE bookings", {}, Exception("database is locked"))
        return real_settle_once(*args, **kwargs)

    monkeypatch.setattr(transitions, "_settle_once", flaky)
    report = reclaim_expired(db, REFERENCE)

    assert len(calls) == 2
    assert report.booking_ids == [booking.id]
    assert len(auto_logs(db)) == 1


def test_exhausted_retries_are_reported_as_failures(db, monkeypatch):
    monkeypatch.setattr(config, "TRANSITION_RETRY_BACKOFF_SECONDS", 0)
    monkeypatch.setattr(config, "TRANSITION_MAX_ATTEMPTS", 2)
    hotel = make_hotel(db)
    booking = make_stay(db, make_room(db, hotel))

    def always_locked(*args, **kwargs):
        raise OperationalError("UPDATE bookings", {}, Exception("database is locked"))

    monkeypatch.setattr(transitions, "_settle_once", always_locked)
    report = reclaim_expired(db, REFERENCE)

    assert report.reclaimed_count == 0
    assert [f.booking_id for f in report.failures] == [booking.id]
    assert "failed after 2 attempts" in report.failures[0].reason
    assert frontdesk.get_booking(db, booking.id).status == models.BookingStatus.CHECKED_IN


def test_room_occupied_iff_one_booking_checked_in(db):
    hotel = make_hotel(db)
    rooms = [make_room(db, hotel, f"20{i}") for i in range(3)]
    make_stay(db, rooms[0], check_out_date=date(2024, 1, 10))
    make_stay(db, rooms[1], check_out_date=date(2024, 1, 12))

    def assert_invariant():
        db.expire_all()
        for room in frontdesk.list_rooms(db, hotel.id):
            checked_in = (
                db.query(models.Booking)
                .filter(models.Booking.room_id == room.id)
                .filter(models.Booking.status == models.BookingStatus.CHECKED_IN)
                .count()
            )
            assert (room.status == models.RoomStatus.OCCUPIED) == (checked_in == 1)
            assert checked_in <= 1

    assert_invariant()
    reclaim_expired(db, REFERENCE)
    assert_invariant()
    reclaim_expired(db, REFERENCE + timedelta(days=2))
    assert_invariant()
