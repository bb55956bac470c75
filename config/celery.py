"""
Celery configuration for Delivery Scout.

Discovery and extraction get their own queues so a slow browser session
never holds up search work; everything else runs on the default queue.
"""

import os
from celery import Celery
from celery.schedules import crontab

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("delivery_scout")

# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()

app.conf.task_queues = {
    "discovery": {
        "exchange": "discovery",
        "routing_key": "discovery",
    },
    "extraction": {
        "exchange": "extraction",
        "routing_key": "extraction",
    },
    "default": {
        "exchange": "default",
        "routing_key": "default",
    },
}

app.conf.task_default_queue = "default"
app.conf.task_default_exchange = "default"
app.conf.task_default_routing_key = "default"

app.conf.task_routes = {
    "scout.tasks.run_discovery": {"queue": "discovery"},
    "scout.tasks.run_extraction": {"queue": "extraction"},
    "scout.tasks.run_quality_pipeline": {"queue": "discovery"},
    "scout.tasks.run_learning_cycle": {"queue": "default"},
    "scout.tasks.reset_search_quotas": {"queue": "default"},
    "scout.tasks.purge_budget_history": {"queue": "default"},
    "scout.tasks.retry_failed_operations": {"queue": "extraction"},
    "scout.tasks.purge_failed_operations": {"queue": "default"},
}

app.conf.beat_schedule = {
    "reset-search-quotas-daily": {
        "task": "scout.tasks.reset_search_quotas",
        "schedule": crontab(hour=0, minute=0),  # 00:00 UTC
    },
    "purge-budget-history-daily": {
        "task": "scout.tasks.purge_budget_history",
        "schedule": crontab(hour=3, minute=15),
    },
    "run-discovery-every-6-hours": {
        "task": "scout.tasks.run_discovery",
        "schedule": crontab(minute=0, hour="*/6"),
    },
    "run-extraction-every-30-minutes": {
        "task": "scout.tasks.run_extraction",
        "schedule": crontab(minute="*/30"),
        "kwargs": {"limit": 20},
    },
    "run-learning-cycle-daily": {
        "task": "scout.tasks.run_learning_cycle",
        "schedule": crontab(hour=2, minute=0),
    },
    "retry-failed-operations-every-5-minutes": {
        "task": "scout.tasks.retry_failed_operations",
        "schedule": crontab(minute="*/5"),
    },
    "purge-failed-operations-daily": {
        "task": "scout.tasks.purge_failed_operations",
        "schedule": crontab(hour=3, minute=30),
    },
}


@app.task(bind=True, ignore_result=True)
def debug_task(self):
    """Debug task for testing Celery configuration."""
    print(f"Request: {self.request!r}")
