"""
Environment-aware configuration.
Values come from the process environment (and .env via python-dotenv);
durations are given in seconds.
"""
import os
from dotenv import load_dotenv
from datetime import timedelta

load_dotenv()  # Read .env if present

MIN_SECRET_BYTES = 32


def _seconds(name: str, default: str) -> timedelta:
    return timedelta(seconds=int(os.getenv(name, default)))


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


class BaseConfig:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")  # Set a strong key in production
    DEBUG = False
    TESTING = False
    # CORS: in dev we usually allow '*', in prod supply a comma-separated list in env
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
    APP_ENV = os.getenv("APP_ENV", "dev")

    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///auth-server.db")
    SQL_ECHO = _flag("SQL_ECHO")

    # Token authority. Access and refresh secrets must differ and be >= 32 bytes.
    JWT_ACCESS_SECRET = os.getenv("JWT_ACCESS_SECRET", "")
    JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "")
    JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
    JWT_ISSUER = "auth-server"
    JWT_AUDIENCE = "auth-client"
    JWT_ACCESS_EXPIRES = _seconds("JWT_ACCESS_EXPIRES_SECONDS", "900")
    JWT_REFRESH_EXPIRES = _seconds("JWT_REFRESH_EXPIRES_SECONDS", "604800")
    # Presenting an already-rotated refresh token logs out every session of that user
    REFRESH_REUSE_REVOKES_ALL = _flag("REFRESH_REUSE_REVOKES_ALL")
    REFRESH_COOKIE_NAME = "refresh_token"
    REFRESH_COOKIE_SECURE = _flag("REFRESH_COOKIE_SECURE")

    EMAIL_VERIFICATION_EXPIRES = _seconds("EMAIL_VERIFICATION_EXPIRES_SECONDS", "86400")
    PASSWORD_RESET_EXPIRES = _seconds("PASSWORD_RESET_EXPIRES_SECONDS", "3600")

    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_USE_TLS = _flag("SMTP_USE_TLS", "true")
    FROM_EMAIL = os.getenv("FROM_EMAIL")
    FROM_NAME = os.getenv("FROM_NAME", "Auth Server")

    CLIENT_URL = os.getenv("CLIENT_URL", "http://localhost:5173")
    SERVER_URL = os.getenv("SERVER_URL", "http://localhost:8000")

    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    FACEBOOK_APP_ID = os.getenv("FACEBOOK_APP_ID")
    FACEBOOK_APP_SECRET = os.getenv("FACEBOOK_APP_SECRET")
    OAUTH_HTTP_TIMEOUT = float(os.getenv("OAUTH_HTTP_TIMEOUT", "10"))

    # Accounts that neither self-deletion nor admins may remove
    PROTECTED_EMAILS = [e for e in os.getenv("PROTECTED_EMAILS", "admin@example.com").split(",") if e]
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@example.com")
    ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    # In dev, propagate exceptions so our error handler has full context
    PROPAGATE_EXCEPTIONS = True
    JWT_ACCESS_SECRET = os.getenv("JWT_ACCESS_SECRET", "dev-access-secret-change-me-0123456789")
    JWT_REFRESH_SECRET = os.getenv("JWT_REFRESH_SECRET", "dev-refresh-secret-change-me-0123456789")


class TestingConfig(BaseConfig):
    TESTING = True
    DATABASE_URL = "sqlite://"
    JWT_ACCESS_SECRET = "test-access-secret-0123456789abcdef0123"
    JWT_REFRESH_SECRET = "test-refresh-secret-0123456789abcdef012"
    SMTP_HOST = None
    GOOGLE_CLIENT_ID = None
    FACEBOOK_APP_ID = None
    REFRESH_COOKIE_SECURE = False
    PROTECTED_EMAILS = ["admin@example.com"]
    ADMIN_EMAIL = "admin@example.com"
    ADMIN_PASSWORD = None


class ProductionConfig(BaseConfig):
    DEBUG = False
    REFRESH_COOKIE_SECURE = True


def get_config(name: str | None):
    """
    Select config class.
    - If name is provided, choose by name.
    - Else choose based on APP_ENV (dev/test/prod).
    """
    if name:
        name = name.lower()
    env = (name or os.getenv("APP_ENV", "dev")).lower()
    if env in ["prod", "production"]:
        return ProductionConfig
    if env in ["test", "testing"]:
        return TestingConfig
    return DevelopmentConfig


def validate_config(config) -> None:
    """Refuse to start with weak or shared signing secrets."""
    access = (config.get("JWT_ACCESS_SECRET") or "").encode()
    refresh = (config.get("JWT_REFRESH_SECRET") or "").encode()
    for key, value in (("JWT_ACCESS_SECRET", access), ("JWT_REFRESH_SECRET", refresh)):
        if len(value) < MIN_SECRET_BYTES:
            raise RuntimeError(f"{key} must be at least {MIN_SECRET_BYTES} bytes")
    if access == refresh:
        raise RuntimeError("JWT_ACCESS_SECRET and JWT_REFRESH_SECRET must differ")
