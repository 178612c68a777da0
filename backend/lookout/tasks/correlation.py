"""Celery task running the periodic correlation sweep.

Only one sweep runs at a time: the task takes a Redis lock and skips the
run when another worker already holds it.
"""

import logging
from typing import Any

from celery import shared_task
from redis import Redis
from redis.exceptions import LockError

from lookout.config import get_settings

logger = logging.getLogger(__name__)

SWEEP_LOCK_NAME = "lookout:correlation-sweep"


@shared_task(
    bind=True,
    name="lookout.run_correlation_sweep",
    max_retries=0,
)
def run_correlation_sweep(self) -> dict[str, Any]:
    """Run one correlation sweep.

    Returns:
        Sweep summary, or ``{"skipped": True}`` when a sweep is already running
    """
    import asyncio

    settings = get_settings()
    client = Redis.from_url(settings.redis_url)
    lock = client.lock(SWEEP_LOCK_NAME, timeout=settings.sweep_lock_timeout_seconds)

    if not lock.acquire(blocking=False):
        logger.info("Correlation sweep already running, skipping")
        client.close()
        return {"skipped": True}

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run_sweep_async())
    finally:
        loop.close()
        try:
            lock.release()
        except LockError:
            logger.warning("Correlation sweep lock expired before release")
        client.close()


async def _run_sweep_async() -> dict[str, Any]:
    """Async implementation of the sweep.

    Uses its own database engine and Elasticsearch client because each task
    run has a fresh event loop.
    """
    from elasticsearch import AsyncElasticsearch
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
    from sqlalchemy.pool import NullPool

    from lookout.services.correlation_engine import CorrelationEngine
    from lookout.services.event_store import EventStore

    settings = get_settings()
    engine = create_async_engine(settings.database_url, poolclass=NullPool)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    es = AsyncElasticsearch(
        hosts=[settings.elasticsearch_url],
        verify_certs=settings.elasticsearch_verify_certs,
    )

    try:
        async with session_maker() as session:
            correlation = CorrelationEngine(session, EventStore(es), settings=settings)
            summary = await correlation.run_sweep()
    finally:
        await es.close()
        await engine.dispose()

    logger.info(
        "Scheduled sweep: %d rules, %d events, %d alerts",
        summary.processed_rules,
        summary.processed_events,
        summary.alerts_generated,
    )
    return summary.model_dump(mode="json")
