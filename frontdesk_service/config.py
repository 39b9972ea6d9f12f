import os
from datetime import time

BASE_DIR = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))

# Use environment variable if set, else default to a local SQLite file
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(BASE_DIR, "frontdesk.db"),
)

# MUST MATCH the token issuer (users/auth service)
SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-only-change-me")
ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# HTTP server
HOST = os.getenv("HOST", "127.0.0.1")
PORT = int(os.getenv("PORT", "8000"))

# Auto-checkout
DEFAULT_CHECKOUT_TIME = time.fromisoformat(os.getenv("DEFAULT_CHECKOUT_TIME", "10:00"))
AUTO_CHECKOUT_REASON = os.getenv("AUTO_CHECKOUT_REASON", "daily_auto_checkout")
AUTO_CHECKOUT_HISTORY_REASON = os.getenv("AUTO_CHECKOUT_HISTORY_REASON", "auto_checkout_daily")
MANUAL_CHECKOUT_REASON = "manual_checkout"
CHECK_IN_REASON = "check_in"
SCHEDULER_ENABLED = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

# Bounded retry for per-booking transitions on lock contention
TRANSITION_MAX_ATTEMPTS = int(os.getenv("TRANSITION_MAX_ATTEMPTS", "3"))
TRANSITION_RETRY_BACKOFF_SECONDS = float(os.getenv("TRANSITION_RETRY_BACKOFF_SECONDS", "0.05"))

# Owner dashboard
AUTO_CHECKOUT_LOG_LIMIT = int(os.getenv("AUTO_CHECKOUT_LOG_LIMIT", "50"))
DASHBOARD_CACHE_TTL_SECONDS = int(os.getenv("DASHBOARD_CACHE_TTL_SECONDS", "30"))

TESTING = os.getenv("TESTING") == "1"
