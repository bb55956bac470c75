"""
Test settings for Delivery Scout.

Uses in-memory SQLite and eager Celery for fast test execution.
"""

import os
from .base import *

# Test mode
DEBUG = False

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "testserver"]

# Test database - in-memory SQLite for speed
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

# Test Cache - use local memory cache
CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "unique-snowflake",
    }
}

# Test Celery - run tasks synchronously
CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

# Test logging - minimal output
LOGGING["loggers"]["django"]["level"] = "WARNING"
LOGGING["loggers"]["scout"]["level"] = "WARNING"

# Password validators disabled for faster tests
AUTH_PASSWORD_VALIDATORS = []

# Use faster password hasher for tests
PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.MD5PasswordHasher",
]

# Disable Sentry in tests
SENTRY_DSN = ""

# Test pipeline settings - single worker, no sleeping between retries
DISCOVERY_MAX_WORKERS = 1
DISCOVERY_MAX_QUERIES_PER_RUN = 20
SEARCH_BACKOFF_SECONDS = 0
SEARCH_MAX_ATTEMPTS = 3
SEARCH_BILLING_ENABLED = False
BUDGET_DAILY_LIMIT_USD = "5.00"
BUDGET_MONTHLY_LIMIT_USD = "100.00"
EXTRACTION_PAGE_TIMEOUT_SECONDS = 5
PLATFORM_FAILURE_THRESHOLD = 5
