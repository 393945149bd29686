import json
import logging
import os

from dotenv import load_dotenv

load_dotenv()

# --- Logging Configuration ---
LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(module)s:%(lineno)d - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# --- Endpoint / Client ---
SHEET_URL = os.environ.get("SHEET_URL", "")
DEFAULT_SHEET = os.environ.get("SHEETLOG_DEFAULT_SHEET", "Sheet1")
REQUEST_TIMEOUT_SECONDS = int(os.environ.get("REQUEST_TIMEOUT_SECONDS", 30))

# --- Host selection ---
BACKEND = os.environ.get("SHEETLOG_BACKEND", "google").lower()
SPREADSHEET_ID = os.environ.get("SHEETLOG_SPREADSHEET_ID", "")
MEMORY_SHEETS = [s.strip() for s in os.environ.get("SHEETLOG_MEMORY_SHEETS", "Sheet1").split(",") if s.strip()]

# --- Google OAuth (refresh token flow) ---
CLIENT_ID = os.environ.get("GOOGLE_CLIENT_ID", "")
CLIENT_SECRET = os.environ.get("GOOGLE_CLIENT_SECRET", "")
REFRESH_TOKEN = os.environ.get("GOOGLE_REFRESH_TOKEN", "")
TOKEN_URL = "https://oauth2.googleapis.com/token"

# --- Request handling ---
LOCK_TIMEOUT_SECONDS = float(os.environ.get("SHEETLOG_LOCK_TIMEOUT", 30))
TIMEZONE = os.environ.get("SHEETLOG_TIMEZONE", "UTC")

PORT = int(os.environ.get("PORT", 5000))
SERVER_THREADS = int(os.environ.get("SHEETLOG_THREADS", 8))
DEMO_PORT = int(os.environ.get("DEMO_PORT", 8000))

ANONYMOUS_USERS = [{"name": "anonymous", "key": {"__unsafe": ""}, "permissions": "*"}]


def configure_logging(level=None):
    logging.basicConfig(level=level or LOG_LEVEL, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def load_users(env_name):
    """User list for one entry point.

    Reads ``env_name`` (e.g. ``SHEETLOG_GET_USERS``), falls back to
    ``SHEETLOG_USERS`` and finally to the anonymous wildcard user. Each entry is
    ``{"name", "key", "permissions"}`` where an unsafe key is written as
    ``{"__unsafe": "..."}``.
    """
    raw = os.environ.get(env_name) or os.environ.get("SHEETLOG_USERS")
    if not raw:
        return list(ANONYMOUS_USERS)
    users = json.loads(raw)
    if not isinstance(users, list):
        raise ValueError(f"{env_name} must be a JSON list of users.")
    return users
