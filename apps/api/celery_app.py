"""Celery application configuration for queued statement parsing."""

from celery import Celery

from apps.api.core.config import settings

# Use Redis as broker and backend
redis_url = settings.REDIS_URL

celery_app = Celery(
    "statement_ingest",
    broker=redis_url,
    backend=redis_url,
    include=["apps.api.tasks.ingestion_tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # a single statement never needs more
    worker_prefetch_multiplier=1,  # Process one task at a time per worker
    result_expires=3600,  # Callers poll shortly after upload
)

celery_app.conf.task_routes = {
    "ingestion.*": {"queue": "ingestion"},
}

if __name__ == "__main__":
    celery_app.start()
