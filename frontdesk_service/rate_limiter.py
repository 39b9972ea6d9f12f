# frontdesk_service/rate_limiter.py
import time
from typing import Any, Dict, List

from fastapi import Depends, HTTPException, status

from . import config
from .auth import get_current_user_claims

WINDOW_SECONDS = 60
MAX_MUTATIONS_PER_WINDOW = 30

_user_request_log: Dict[Any, List[float]] = {}


def booking_rate_limiter(claims: Dict[str, Any] = Depends(get_current_user_claims)):
    """
    Rate limit booking mutations (create, check-in, check-out, cancel)
    per authenticated staff member.
    """
    # Skip rate limiting completely in automated tests
    if config.TESTING:
        return
    key = claims.get("user_id") or claims["username"]
    now = time.time()
    window_start = now - WINDOW_SECONDS

    timestamps = _user_request_log.get(key, [])
    timestamps = [ts for ts in timestamps if ts >= window_start]

    if len(timestamps) >= MAX_MUTATIONS_PER_WINDOW:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many booking operations in a short time",
        )

    timestamps.append(now)
    _user_request_log[key] = timestamps
