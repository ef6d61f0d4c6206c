"""Django settings for the meal pre-order API.

Every deployment-specific value is read from the environment so the same
module serves local development, CI and production containers. Payment
gateway credentials are only ever held server-side.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-insecure-change-me")
DEBUG = _env_bool("DJANGO_DEBUG", False)
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "rest_framework",
    "rest_framework.authtoken",
    "apps.orders",
    "apps.payments",
    "apps.monitoring",
]

MIDDLEWARE = [
    "mealorders.middleware.RequestIdMiddleware",
    "mealorders.middleware.ApiSizeLimitMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
]

ROOT_URLCONF = "mealorders.urls"
WSGI_APPLICATION = "mealorders.wsgi.application"

DATABASES = {
    "default": {
        "ENGINE": os.getenv("DB_ENGINE", "django.db.backends.postgresql"),
        "NAME": os.getenv("DB_NAME", "mealorders"),
        "USER": os.getenv("DB_USER", "mealorders"),
        "PASSWORD": os.getenv("DB_PASSWORD", "mealorders-pass"),
        "HOST": os.getenv("DB_HOST", "orders-db"),
        "PORT": os.getenv("DB_PORT", "5432"),
        "CONN_MAX_AGE": int(os.getenv("DB_CONN_MAX_AGE", "60")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
LANGUAGE_CODE = "id"
TIME_ZONE = os.getenv("TIME_ZONE", "Asia/Jakarta")
USE_TZ = True

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "mealorders.authentication.BearerTokenAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_THROTTLE_RATES": {
        "orders_list": os.getenv("THROTTLE_ORDERS_LIST", "120/min"),
        "orders_create": os.getenv("THROTTLE_ORDERS_CREATE", "30/min"),
        "orders_detail": os.getenv("THROTTLE_ORDERS_DETAIL", "240/min"),
        "payments_create": os.getenv("THROTTLE_PAYMENTS_CREATE", "20/min"),
    },
}

# ---- Payment gateway (Midtrans Snap) ----
MIDTRANS_SERVER_KEY = os.getenv("MIDTRANS_SERVER_KEY", "")
MIDTRANS_IS_PRODUCTION = _env_bool("MIDTRANS_IS_PRODUCTION", False)
MIDTRANS_SNAP_SANDBOX_URL = os.getenv("MIDTRANS_SNAP_SANDBOX_URL", "https://app.sandbox.midtrans.com")
MIDTRANS_SNAP_PRODUCTION_URL = os.getenv("MIDTRANS_SNAP_PRODUCTION_URL", "https://app.midtrans.com")
MIDTRANS_API_SANDBOX_URL = os.getenv("MIDTRANS_API_SANDBOX_URL", "https://api.sandbox.midtrans.com")
MIDTRANS_API_PRODUCTION_URL = os.getenv("MIDTRANS_API_PRODUCTION_URL", "https://api.midtrans.com")
PAYMENT_FALLBACK_EMAIL = os.getenv("PAYMENT_FALLBACK_EMAIL", "customer@kideats.com")

# Real HTTP gateway client vs in-process stub
USE_HTTP_ADAPTERS = _env_bool("USE_HTTP_ADAPTERS", True)

# ---- Request guards ----
API_MAX_BYTES = int(os.getenv("API_MAX_BYTES", str(256 * 1024)))

# ---- Outbound HTTP resilience ----
HTTP_TIMEOUT_SECS = float(os.getenv("HTTP_TIMEOUT_SECS", "10"))
HTTP_RETRY_MAX = int(os.getenv("HTTP_RETRY_MAX", "3"))
HTTP_RETRY_BACKOFF_BASE = float(os.getenv("HTTP_RETRY_BACKOFF_BASE", "0.15"))
HTTP_RETRY_MAX_SLEEP = float(os.getenv("HTTP_RETRY_MAX_SLEEP", "0.5"))
HTTP_CIRCUIT_FAIL_THRESHOLD = int(os.getenv("HTTP_CIRCUIT_FAIL_THRESHOLD", "5"))
HTTP_CIRCUIT_RESET_TIMEOUT = float(os.getenv("HTTP_CIRCUIT_RESET_TIMEOUT", "30"))

# ---- Storage retries (webhook + linkage writes) ----
STORAGE_RETRY_MAX = int(os.getenv("STORAGE_RETRY_MAX", "3"))
STORAGE_RETRY_BACKOFF_BASE = float(os.getenv("STORAGE_RETRY_BACKOFF_BASE", "0.1"))

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "request_id": {"()": "mealorders.logging_filters.RequestIdFilter"},
    },
    "formatters": {
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "fmt": "%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        },
    },
    "handlers": {
        "stdout": {
            "class": "logging.StreamHandler",
            "formatter": "json",
            "filters": ["request_id"],
        },
    },
    "root": {"handlers": ["stdout"], "level": os.getenv("LOG_LEVEL", "INFO")},
    "loggers": {
        "payments": {"level": os.getenv("PAYMENTS_LOG_LEVEL", "INFO"), "propagate": True},
        "orders": {"level": os.getenv("ORDERS_LOG_LEVEL", "INFO"), "propagate": True},
        "django.request": {"level": "WARNING", "propagate": True},
    },
}
