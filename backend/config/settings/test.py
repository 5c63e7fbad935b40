"""
Test settings.

In-memory SQLite and local-memory cache so the suite runs without services.
"""

from .base import *  # noqa: F403

DEBUG = False
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "passkeys-tests",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

WEBAUTHN_RP_ID = "localhost"
WEBAUTHN_RP_NAME = "Passkeys Test"
WEBAUTHN_ORIGINS = ["http://localhost:3000", "http://localhost:4000"]
PASSKEY_CHALLENGE_STORE = "database"
PASSKEY_CHALLENGE_TTL_SECONDS = 120
PASSKEY_CEREMONY_TIMEOUT_MS = 60000
PASSKEY_REQUIRE_CROSS_PLATFORM = False
