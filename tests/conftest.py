import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

# Must be set before frontdesk_service is imported
os.environ["DATABASE_URL"] = "sqlite:///" + os.path.join(PROJECT_ROOT, "frontdesk_test.db")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["TESTING"] = "1"
os.environ["TRANSITION_RETRY_BACKOFF_SECONDS"] = "0.01"
os.environ.pop("REDIS_URL", None)
