"""
Celery application configuration for Academie.

Tasks are defined with the @shared_task decorator so they also run under
CELERY_TASK_ALWAYS_EAGER in tests.

Components:
  - Worker: Runs billing side effects (`celery -A config worker`)
  - Beat: Triggers the membership sweeps (`celery -A config beat`)

Configuration:
  - Broker: Redis (CELERY_BROKER_URL)
  - Result backend: None (fire-and-forget, all state in Django models)
  - Task serialization: JSON
  - Periodic tasks: django-celery-beat with DatabaseScheduler, populated
    by `manage.py sync_schedules`

Usage:
    celery -A config worker --loglevel=info
    celery -A config beat --loglevel=info \\
        --scheduler django_celery_beat.schedulers:DatabaseScheduler
"""

import logging
import os

from celery import Celery

logger = logging.getLogger(__name__)

# Set the default Django settings module for the 'celery' program.
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings.local")

app = Celery("academie")

# - namespace='CELERY' means all celery-related configuration keys
#   should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Load task modules from all registered Django apps.
app.autodiscover_tasks()


@app.task(bind=True, ignore_result=True)
def debug_task(self):
    """Debug task for testing Celery connectivity."""
    logger.info("Debug task received: %r", self.request)
