import logging
import threading
from datetime import datetime, time, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from . import config, models, schemas
from .reclamation import reclaim_expired

logger = logging.getLogger(__name__)

RECHECK_INTERVAL_SECONDS = 15 * 60
ERROR_RETRY_SECONDS = 60


def next_run_after(now: datetime, checkout_time: time) -> datetime:
    """
    Return the next occurrence of ``checkout_time`` strictly after ``now``.
    """
    candidate = datetime.combine(now.date(), checkout_time)
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def checkout_groups(db: Session) -> Dict[time, List[int]]:
    """Group hotel ids by their configured checkout time."""
    groups: Dict[time, List[int]] = {}
    for hotel_id, checkout_time in db.query(models.Hotel.id, models.Hotel.checkout_time).order_by(models.Hotel.id):
        groups.setdefault(checkout_time or config.DEFAULT_CHECKOUT_TIME, []).append(hotel_id)
    return groups


class AutoCheckoutScheduler:
    """
    Background thread that runs the auto-checkout pass once a day per hotel,
    at each hotel's checkout time.

    The pass for a boundary is given that boundary as its reference time.
    When no hotels exist yet, a single unscoped pass runs at
    DEFAULT_CHECKOUT_TIME.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="auto-checkout", daemon=True)
        self._thread.start()
        logger.info("Auto-checkout scheduler started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Auto-checkout scheduler stopped")

    def next_firing(self, now: datetime) -> Tuple[datetime, Optional[List[int]]]:
        """
        Return the next boundary and the hotels due at it.

        ``None`` as the hotel list means an unscoped pass.
        """
        db = self.session_factory()
        try:
            groups = checkout_groups(db)
        finally:
            db.close()

        if not groups:
            return next_run_after(now, config.DEFAULT_CHECKOUT_TIME), None

        when, hotel_ids = min(
            ((next_run_after(now, checkout_time), ids) for checkout_time, ids in groups.items()),
            key=lambda item: item[0],
        )
        return when, hotel_ids

    def run_once(self, reference_time: datetime, hotel_ids: Optional[List[int]] = None) -> List[schemas.ReclamationReport]:
        """Run the auto-checkout pass for the given hotels (or all of them)."""
        db = self.session_factory()
        try:
            if hotel_ids is None:
                return [reclaim_expired(db, reference_time)]
            return [reclaim_expired(db, reference_time, hotel_id) for hotel_id in hotel_ids]
        finally:
            db.close()

    def _run(self) -> None:
        last_fired: Optional[datetime] = None
        while not self._stop.is_set():
            now = self.clock()
            if last_fired is not None and now < last_fired:
                # the wall clock can read behind the wait timeout
                now = last_fired
            try:
                when, hotel_ids = self.next_firing(now)
            except Exception:
                logger.exception("Could not compute next auto-checkout run")
                if self._stop.wait(ERROR_RETRY_SECONDS):
                    return
                continue

            delay = max((when - self.clock()).total_seconds(), 0)
            if delay > RECHECK_INTERVAL_SECONDS:
                # hotels may be added or change checkout time meanwhile
                if self._stop.wait(RECHECK_INTERVAL_SECONDS):
                    return
                continue
            logger.info("Next auto-checkout at %s", when.isoformat())
            if self._stop.wait(delay):
                return
            last_fired = when
            try:
                self.run_once(when, hotel_ids)
            except Exception:
                # the next scheduled run picks up anything left behind
                logger.exception("Auto-checkout pass at %s failed", when.isoformat())
