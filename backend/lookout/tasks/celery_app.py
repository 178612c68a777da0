"""Celery application for Lookout.

Redis serves as broker and result backend. Celery beat triggers the
correlation sweep every ``sweep_interval_seconds``.
"""

from celery import Celery

from lookout.config import get_settings

settings = get_settings()

celery_app = Celery(
    "lookout",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["lookout.tasks.correlation"],
)

celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # A sweep that overruns its own timeout is killed shortly after
    task_time_limit=int(settings.sweep_timeout_seconds) + 120,
    task_soft_time_limit=int(settings.sweep_timeout_seconds) + 60,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    # Result settings
    result_expires=86400,
    # Routing
    task_default_queue="default",
    task_routes={
        "lookout.run_correlation_sweep": {"queue": "correlation"},
    },
    # Periodic sweep
    beat_schedule={
        "correlation-sweep": {
            "task": "lookout.run_correlation_sweep",
            "schedule": float(settings.sweep_interval_seconds),
        },
    },
    # Worker settings
    worker_prefetch_multiplier=1,
    worker_hijack_root_logger=False,
    worker_log_format="[%(asctime)s: %(levelname)s/%(processName)s] %(message)s",
    worker_task_log_format=(
        "[%(asctime)s: %(levelname)s/%(processName)s][%(task_name)s(%(task_id)s)] %(message)s"
    ),
)
