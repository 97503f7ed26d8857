import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() == "true"


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")
    JWT_SECRET = os.getenv("JWT_SECRET")

    # SQLite database file stored beside the app as admin_auth.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "admin_auth.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Access token claims
    JWT_ALGORITHM = "HS256"
    JWT_ISSUER = "admin-panel-auth"
    JWT_AUDIENCE = "admin-panel"

    # Cookie / header contract
    AUTH_COOKIE_NAME = "admin_token"
    REFRESH_COOKIE_NAME = "admin_refresh"
    CSRF_COOKIE_NAME = "csrf-token"
    CSRF_HEADER_NAME = "X-CSRF-Token"

    # 24 hours session lifetime, also the access token lifetime
    SESSION_LIFETIME_SECONDS = 24 * 60 * 60
    REFRESH_COOKIE_MAX_AGE_SECONDS = 7 * 24 * 60 * 60

    # CSRF: server record lives 1 hour, cookie 24 hours
    CSRF_TOKEN_TTL_SECONDS = 60 * 60
    CSRF_COOKIE_MAX_AGE_SECONDS = 24 * 60 * 60

    # Session/cookie security defaults
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv("SESSION_COOKIE_SAMESITE", "Lax")
    SESSION_COOKIE_SECURE = _env_bool("SESSION_COOKIE_SECURE", "false")  # set True when using HTTPS

    # Brute-force protection
    MAX_LOGIN_ATTEMPTS = 5
    LOCKOUT_MINUTES = 30

    # Password hashing / policy
    BCRYPT_ROUNDS = 12
    PASSWORD_MIN_LEN = 8
    PASSWORD_MAX_LEN = 128
    PASSWORD_RESET_TTL_SECONDS = 60 * 60

    # Sliding-window rate limits per (ip, endpoint group)
    RATE_LIMITS = {
        "default": {"window_seconds": 15 * 60, "max_requests": 100, "block_seconds": 0},
        "login": {"window_seconds": 15 * 60, "max_requests": 3, "block_seconds": 60 * 60},
        "password_reset": {"window_seconds": 60 * 60, "max_requests": 3, "block_seconds": 2 * 60 * 60},
    }

    # IP threat scoring
    THREAT_WINDOW_SECONDS = 60 * 60
    THREAT_MONITOR_WINDOW_SECONDS = 5 * 60
    THREAT_MONITOR_MIN_EVENTS = 3
    IP_BLOCK_SECONDS = 60 * 60

    # Retention for the expiry sweeper
    LOGIN_ATTEMPT_RETENTION_DAYS = 7
    SECURITY_LOG_RETENTION_DAYS = 30
    RATE_LIMIT_RETENTION_DAYS = 1

    # Background tasks
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", "true")
    EXPIRY_SWEEP_INTERVAL_SECONDS = 30 * 60
    THREAT_MONITOR_INTERVAL_SECONDS = 5 * 60

    # Admin panel URL (used in reset emails)
    ADMIN_PANEL_URL = os.getenv("ADMIN_PANEL_URL")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", "true")
    SMTP_TIMEOUT_SECONDS = int(os.getenv("SMTP_TIMEOUT_SECONDS", "10"))
    EMAIL_SUBJECT_PREFIX = os.getenv("EMAIL_SUBJECT_PREFIX", "[Admin Panel]")

    # Basic app settings
    DEBUG = False


class TestingConfig(Config):
    TESTING = True
    SECRET_KEY = "test-secret-key"
    JWT_SECRET = "test-jwt-secret-0123456789abcdef0123456789"
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    BCRYPT_ROUNDS = 4
    SCHEDULER_ENABLED = False
    SMTP_HOST = None
