"""
Django base settings for Delivery Scout.

This module contains settings common to all environments.
For more information on this file, see
https://docs.djangoproject.com/en/4.2/topics/settings/
"""

import json
import os
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent.parent


# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.getenv(
    "SECRET_KEY",
    "django-insecure-scout-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = os.getenv("DEBUG", "True") == "True"

ALLOWED_HOSTS = os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")


# Application definition

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # Local apps
    "scout",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
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


# Database
# Configured in environment-specific settings (development.py, production.py, test.py)

DATABASES = {
    # Override in environment-specific settings
}


# Password validation
# https://docs.djangoproject.com/en/4.2/ref/settings/#auth-password-validators

AUTH_PASSWORD_VALIDATORS = [
    {
        "NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.MinimumLengthValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.CommonPasswordValidator",
    },
    {
        "NAME": "django.contrib.auth.password_validation.NumericPasswordValidator",
    },
]


# Internationalization

LANGUAGE_CODE = "en-us"

# Budget days and quota resets are UTC
TIME_ZONE = "UTC"

USE_I18N = True

USE_TZ = True


# Static files (CSS, JavaScript, Images)

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"


# Cache (query cache and platform health counters)
# Configured in environment-specific settings

CACHES = {
    # Override in environment-specific settings
}


# Celery Configuration
# https://docs.celeryproject.org/en/stable/django/first-steps-with-django.html

CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/1")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = TIME_ZONE
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 60 * 60  # 1 hour max for a discovery or extraction run

CELERY_TASK_ROUTES = {
    "scout.tasks.run_discovery": {"queue": "discovery"},
    "scout.tasks.run_quality_pipeline": {"queue": "discovery"},
    "scout.tasks.run_extraction": {"queue": "extraction"},
    "scout.tasks.retry_failed_operations": {"queue": "extraction"},
}


# Logging Configuration
# https://docs.djangoproject.com/en/4.2/topics/logging/

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {message}",
            "style": "{",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
        "scout": {
            "handlers": ["console"],
            "level": os.getenv("LOG_LEVEL", "INFO"),
        },
    },
}


# Sentry Configuration
# https://docs.sentry.io/platforms/python/guides/django/

SENTRY_DSN = os.getenv("SENTRY_DSN", "")
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.2"))

# Initialize Sentry
import sentry_sdk

sentry_sdk.init(
    dsn=SENTRY_DSN,
    send_default_pii=False,
    traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
    environment=SENTRY_ENVIRONMENT,
)


# Budget (USD). Empty means no ceiling.

BUDGET_DAILY_LIMIT_USD = os.getenv("BUDGET_DAILY_LIMIT_USD", "5.00") or None
BUDGET_MONTHLY_LIMIT_USD = os.getenv("BUDGET_MONTHLY_LIMIT_USD", "100.00") or None
BUDGET_RETENTION_DAYS = int(os.getenv("BUDGET_RETENTION_DAYS", "90"))


# Search engine pool

# Paid mode only starts once every free quota is used up
SEARCH_BILLING_ENABLED = os.getenv("SEARCH_BILLING_ENABLED", "False") == "True"
SEARCH_PAID_QUERY_COST_USD = os.getenv("SEARCH_PAID_QUERY_COST_USD", "0.005")
SEARCH_MAX_ATTEMPTS = int(os.getenv("SEARCH_MAX_ATTEMPTS", "3"))
SEARCH_BACKOFF_SECONDS = float(os.getenv("SEARCH_BACKOFF_SECONDS", "1.0"))
SEARCH_REQUEST_TIMEOUT = int(os.getenv("SEARCH_REQUEST_TIMEOUT", "15"))

QUERY_CACHE_TTL_SECONDS = int(os.getenv("QUERY_CACHE_TTL_SECONDS", str(24 * 60 * 60)))


# Dead-letter queue for failed venue operations

DEAD_LETTER_MAX_ATTEMPTS = int(os.getenv("DEAD_LETTER_MAX_ATTEMPTS", "5"))
DEAD_LETTER_BASE_DELAY_SECONDS = int(os.getenv("DEAD_LETTER_BASE_DELAY_SECONDS", "300"))
DEAD_LETTER_MAX_DELAY_SECONDS = int(os.getenv("DEAD_LETTER_MAX_DELAY_SECONDS", str(6 * 60 * 60)))
DEAD_LETTER_RETENTION_DAYS = int(os.getenv("DEAD_LETTER_RETENTION_DAYS", "30"))


# Discovery

DISCOVERY_MAX_WORKERS = int(os.getenv("DISCOVERY_MAX_WORKERS", "4"))
DISCOVERY_MAX_QUERIES_PER_RUN = int(os.getenv("DISCOVERY_MAX_QUERIES_PER_RUN", "50"))
DISCOVERY_STRATEGIES_PER_SOURCE = int(os.getenv("DISCOVERY_STRATEGIES_PER_SOURCE", "5"))

# rapidfuzz score (0-100) for a venue name to count as a chain location
CHAIN_MATCH_THRESHOLD = int(os.getenv("CHAIN_MATCH_THRESHOLD", "88"))

BRAND_MISUSE_PATTERNS = [
    r"\bgarden\s*cent(?:er|re)\b",
    r"\bgartencenter\b",
    r"\bnursery\b",
    r"\bbaumschule\b",
    r"\bflorist\b",
    r"\bblumen\b",
]
BRAND_OFFICIAL_VENUE_NAMES = [
    name.strip()
    for name in os.getenv("BRAND_OFFICIAL_VENUE_NAMES", "planted kitchen").split(",")
    if name.strip()
]


# Tracked products

TRACKED_PRODUCT_KEYWORDS = [
    k.strip() for k in os.getenv("TRACKED_PRODUCT_KEYWORDS", "planted").split(",") if k.strip()
]

# Product tag -> menu keywords. Override with a JSON object in TRACKED_PRODUCTS_JSON.
TRACKED_PRODUCTS = json.loads(os.getenv("TRACKED_PRODUCTS_JSON", "null")) or {
    "planted.chicken": ["planted chicken", "planted.chicken", "planted poulet"],
    "planted.kebab": ["planted kebab", "planted.kebab", "planted döner"],
    "planted.pulled": ["planted pulled", "planted.pulled"],
    "planted.schnitzel": ["planted schnitzel", "planted.schnitzel"],
    "planted.steak": ["planted steak", "planted.steak"],
    "planted": ["planted"],
}


# Extraction

EXTRACTION_PAGE_TIMEOUT_SECONDS = int(os.getenv("EXTRACTION_PAGE_TIMEOUT_SECONDS", "45"))
EXTRACTION_HEADLESS = os.getenv("EXTRACTION_HEADLESS", "True") == "True"


# Monitoring

# Consecutive failure threshold - alert after N consecutive failures per platform/country
PLATFORM_FAILURE_THRESHOLD = int(os.getenv("PLATFORM_FAILURE_THRESHOLD", "5"))
