import os
import secrets

APP_TITLE = os.getenv("APP_TITLE", "Pinzo")
SECRET_KEY = os.getenv("SECRET_KEY", secrets.token_hex(32))
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000")
SESSION_HTTPS_ONLY = BASE_URL.startswith("https://")

DB_URL = os.getenv("DATABASE_URL") or os.getenv("DB_URL") or "sqlite:///./app.db"
IS_SQLITE = DB_URL.startswith("sqlite:")

GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID", "")
GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET", "")
OAUTH_REDIRECT_URI = os.getenv("OAUTH_REDIRECT_URI", "")

# Session gate
FORCE_HTTPS = os.getenv("FORCE_HTTPS", "1").strip().lower() not in ("0", "false", "no", "")
PUBLIC_PATH = os.getenv("PUBLIC_PATH", "/")
PROTECTED_PREFIX = os.getenv("PROTECTED_PREFIX", "/dashboard")

# Change relay
RELAY_QUEUE_SIZE = int(os.getenv("RELAY_QUEUE_SIZE", "256"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
