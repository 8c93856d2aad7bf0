import os


def normalize_database_url(url: str) -> str:
    if url.startswith("postgres://"):
        return "postgresql+psycopg://" + url[len("postgres://") :]
    if url.startswith("postgresql://"):
        return "postgresql+psycopg://" + url[len("postgresql://") :]
    return url


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    try:
        return int(raw) if raw is not None else int(default)
    except (TypeError, ValueError):
        return int(default)


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    SQLALCHEMY_DATABASE_URI = normalize_database_url(
        os.getenv("DATABASE_URL", "sqlite:///dev.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"
    SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "disciplined_session")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Chicago")

    VAPID_PUBLIC_KEY = os.getenv("VAPID_PUBLIC_KEY") or os.getenv("NEXT_PUBLIC_VAPID_PUBLIC_KEY")
    VAPID_PRIVATE_KEY = os.getenv("VAPID_PRIVATE_KEY")
    VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:admin@disciplined.life")

    # Must match the cron cadence (*/5).
    PUSH_CRON_WINDOW_MINUTES = _as_int("PUSH_CRON_WINDOW_MINUTES", 5)
    PUSH_WINDOW_ENDING_SOON_MINUTES = _as_int("PUSH_WINDOW_ENDING_SOON_MINUTES", 30)
    PUSH_SEND_TIMEOUT_SECONDS = _as_int("PUSH_SEND_TIMEOUT_SECONDS", 10)

    # Accounts registered with these addresses start approved as admins.
    ADMIN_EMAILS = {
        email.strip().lower()
        for email in os.getenv("ADMIN_EMAILS", "").split(",")
        if email.strip()
    }
