# config/settings/test.py
from .base import *  # noqa

SECRET_KEY = "test-only-key"
DEBUG = False

# File-backed test DB so threaded tests (concurrent payments) share one database.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": str(BASE_DIR / "hm_ledger.sqlite3"),  # noqa: F405
        "TEST": {"NAME": str(BASE_DIR / "test_hm_ledger.sqlite3")},  # noqa: F405
        "OPTIONS": {"timeout": 20},
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]


LOGGING["loggers"]["hm_ledger"]["level"] = "WARNING"  # noqa: F405
