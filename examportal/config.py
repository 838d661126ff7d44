from dotenv import load_dotenv
import os

load_dotenv()

SECRET = os.getenv("SECRET", "change-this-in-production")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./examportal.db")
# only used when DATABASE_URL points at PostgreSQL
SCHEMA_SEARCH_PATH = os.getenv("SCHEMA_SEARCH_PATH")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")

JWT_LIFETIME_SECONDS = int(os.getenv("JWT_LIFETIME_SECONDS", "3600"))
INVITATION_TTL_HOURS = int(os.getenv("INVITATION_TTL_HOURS", "168"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# NOTE: exact origins used by the frontend dev server (no trailing slash)
CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    if o.strip()
]
