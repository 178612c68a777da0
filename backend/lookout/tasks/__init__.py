"""Celery tasks for Lookout."""

from lookout.tasks.celery_app import celery_app

__all__ = ["celery_app"]
