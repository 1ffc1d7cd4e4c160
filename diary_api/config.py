import os


def build_database_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    host = os.getenv("POSTGRES_HOST", "postgres")
    db = os.getenv("POSTGRES_DB", "diary")
    user = os.getenv("POSTGRES_USER", "diary")
    password = os.getenv("POSTGRES_PASSWORD", "")
    return f"postgresql://{user}:{password}@{host}:5432/{db}"


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


DB_CREATE_SCHEMA = _env_flag("DB_CREATE_SCHEMA")
DB_OPERATION_TIMEOUT = float(os.getenv("DB_OPERATION_TIMEOUT", "5"))
DB_WRITE_RETRIES = int(os.getenv("DB_WRITE_RETRIES", "3"))
DB_RETRY_BACKOFF = float(os.getenv("DB_RETRY_BACKOFF", "0.05"))

DIARY_TIMEZONE = os.getenv("DIARY_TIMEZONE", "Asia/Tokyo")
MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", "10000"))
PREVIEW_LENGTH = 100
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "").strip() or None
ADMIN_SESSION_TTL_SECONDS = int(os.getenv("ADMIN_SESSION_TTL_SECONDS", "3600"))

RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "60"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "3600"))

TURNSTILE_SECRET_KEY = os.getenv("TURNSTILE_SECRET_KEY", "").strip() or None
TURNSTILE_VERIFY_URL = os.getenv(
    "TURNSTILE_VERIFY_URL",
    "https://challenges.cloudflare.com/turnstile/v0/siteverify",
)
TURNSTILE_TIMEOUT = float(os.getenv("TURNSTILE_TIMEOUT", "10"))

CORS_ALLOW_ORIGINS = [
    origin.strip() for origin in os.getenv("CORS_ALLOW_ORIGINS", "").split(",") if origin.strip()
]
