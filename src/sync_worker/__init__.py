"""Celery worker running scheduled and queued catalog synchronization."""
