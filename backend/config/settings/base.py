"""
Base Django settings for the passkey authentication service.

Shared configuration for all environments.
"""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

from apps.core.logging import configure_logging


class Settings(BaseSettings):
    """Environment-based configuration using pydantic-settings."""

    SECRET_KEY: str = "django-insecure-change-me-in-production"
    DEBUG: bool = False
    ALLOWED_HOSTS: list[str] = []

    # Database
    DB_NAME: str = "passkeys"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = "postgres"
    DB_HOST: str = "localhost"
    DB_PORT: str = "5432"

    # Relying party
    WEBAUTHN_RP_ID: str = "localhost"
    WEBAUTHN_RP_NAME: str = "Passkeys App"
    WEBAUTHN_ORIGINS: list[str] = ["http://localhost:3000"]

    # Ceremonies
    PASSKEY_CHALLENGE_TTL_SECONDS: int = 120
    PASSKEY_CHALLENGE_STORE: str = "database"
    PASSKEY_CEREMONY_TIMEOUT_MS: int = 60000
    PASSKEY_REQUIRE_CROSS_PLATFORM: bool = False

    # Sessions and device recognition
    AUTH_SESSION_COOKIE_NAME: str = "session"
    AUTH_SESSION_TTL_SECONDS: int = 7 * 24 * 60 * 60
    DEVICE_TOKEN_COOKIE_NAME: str = "device_token"
    DEVICE_TOKEN_TTL_DAYS: int = 30

    # Rate limits (requests per window, per client IP)
    AUTH_OPTIONS_RATE_LIMIT: int = 20
    CHECK_USER_RATE_LIMIT: int = 5
    RATE_LIMIT_WINDOW_SECONDS: int = 60

    # Logging
    LOG_JSON: bool = True
    LOG_LEVEL: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}

    @field_validator("WEBAUTHN_RP_ID")
    @classmethod
    def validate_rp_id(cls, value: str) -> str:
        """The RP ID is a registrable domain, not a URL."""
        if "://" in value or "/" in value or not value:
            raise ValueError("WEBAUTHN_RP_ID must be a bare host name, e.g. 'example.com'")
        return value.lower()

    @field_validator("PASSKEY_CHALLENGE_STORE")
    @classmethod
    def validate_challenge_store(cls, value: str) -> str:
        if value not in ("database", "cache"):
            raise ValueError("PASSKEY_CHALLENGE_STORE must be 'database' or 'cache'")
        return value

    @field_validator("PASSKEY_CHALLENGE_TTL_SECONDS")
    @classmethod
    def validate_challenge_ttl(cls, value: int) -> int:
        if not 60 <= value <= 300:
            raise ValueError("PASSKEY_CHALLENGE_TTL_SECONDS must be between 60 and 300")
        return value


settings = Settings()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = settings.SECRET_KEY

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = settings.DEBUG

ALLOWED_HOSTS = settings.ALLOWED_HOSTS

# Application definition
INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Local apps
    "apps.core",
    "apps.accounts",
    "apps.passkeys",
    "apps.devices",
    "apps.embed",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "apps.core.middleware.RequestContextMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

WSGI_APPLICATION = "config.wsgi.application"

AUTH_USER_MODEL = "accounts.User"

# Database
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": settings.DB_NAME,
        "USER": settings.DB_USER,
        "PASSWORD": settings.DB_PASSWORD,
        "HOST": settings.DB_HOST,
        "PORT": settings.DB_PORT,
    }
}

# Rate limits and cache-backed challenges share the database cache across workers
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.db.DatabaseCache",
        "LOCATION": "django_cache",
    }
}

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# Static files (CSS, JavaScript, Images)
STATIC_URL = "static/"

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# WebAuthn relying party
WEBAUTHN_RP_ID = settings.WEBAUTHN_RP_ID
WEBAUTHN_RP_NAME = settings.WEBAUTHN_RP_NAME
WEBAUTHN_ORIGINS = settings.WEBAUTHN_ORIGINS

PASSKEY_CHALLENGE_TTL_SECONDS = settings.PASSKEY_CHALLENGE_TTL_SECONDS
PASSKEY_CHALLENGE_STORE = settings.PASSKEY_CHALLENGE_STORE
PASSKEY_CEREMONY_TIMEOUT_MS = settings.PASSKEY_CEREMONY_TIMEOUT_MS
PASSKEY_REQUIRE_CROSS_PLATFORM = settings.PASSKEY_REQUIRE_CROSS_PLATFORM

# Sessions issued after a successful ceremony
AUTH_SESSION_COOKIE_NAME = settings.AUTH_SESSION_COOKIE_NAME
AUTH_SESSION_TTL_SECONDS = settings.AUTH_SESSION_TTL_SECONDS
DEVICE_TOKEN_COOKIE_NAME = settings.DEVICE_TOKEN_COOKIE_NAME
DEVICE_TOKEN_TTL_DAYS = settings.DEVICE_TOKEN_TTL_DAYS

AUTH_OPTIONS_RATE_LIMIT = settings.AUTH_OPTIONS_RATE_LIMIT
CHECK_USER_RATE_LIMIT = settings.CHECK_USER_RATE_LIMIT
RATE_LIMIT_WINDOW_SECONDS = settings.RATE_LIMIT_WINDOW_SECONDS

configure_logging(json_format=settings.LOG_JSON, log_level=settings.LOG_LEVEL)
