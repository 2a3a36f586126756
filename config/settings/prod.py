# config/settings/prod.py
from .base import *  # noqa

DEBUG = False

CORS_ALLOW_ALL_ORIGINS = False
CORS_ALLOWED_ORIGINS = [
    "https://app.yourdomain.com",
    "https://admin.yourdomain.com",
]
CORS_ALLOW_CREDENTIALS = True

LOGGING["loggers"]["hm_ledger"]["level"] = os.getenv("HM_LEDGER_LOG_LEVEL", "INFO")  # noqa: F405
