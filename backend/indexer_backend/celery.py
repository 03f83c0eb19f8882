"""
Celery application configuration.

Celery runs periodic backlog catch-up for deployments that do not keep a
``run_indexers`` daemon alive.

Usage:
    # Start worker
    celery -A indexer_backend worker -l INFO

    # Start beat scheduler (for periodic catch-up)
    celery -A indexer_backend beat -l INFO
"""
import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "indexer_backend.settings")

app = Celery("indexer_backend")

# Load config from Django settings
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
