"""Database connection management for PostgreSQL, Elasticsearch and Redis."""

from collections.abc import AsyncGenerator

from elasticsearch import AsyncElasticsearch
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from lookout.config import get_settings

settings = get_settings()

# PostgreSQL
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base."""

    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting database sessions."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# Elasticsearch
_es_client: AsyncElasticsearch | None = None


async def get_elasticsearch() -> AsyncElasticsearch:
    """Get Elasticsearch client."""
    global _es_client
    if _es_client is None:
        _es_client = AsyncElasticsearch(
            hosts=[settings.elasticsearch_url],
            verify_certs=settings.elasticsearch_verify_certs,
        )
    return _es_client


async def close_elasticsearch() -> None:
    """Close Elasticsearch client."""
    global _es_client
    if _es_client is not None:
        await _es_client.close()
        _es_client = None


# Redis
_redis_client: Redis | None = None


async def get_redis() -> Redis:
    """Get Redis client."""
    global _redis_client
    if _redis_client is None:
        _redis_client = Redis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
        )
    return _redis_client


async def close_redis() -> None:
    """Close Redis client."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


async def init_elasticsearch_indices() -> None:
    """Install the index template for normalized events."""
    es = await get_elasticsearch()

    events_template = {
        "index_patterns": [settings.events_index_pattern],
        "template": {
            "settings": {
                "number_of_shards": 1,
                "number_of_replicas": 0,
            },
            "mappings": {
                "properties": {
                    "@timestamp": {"type": "date"},
                    "event": {
                        "properties": {
                            "id": {"type": "keyword"},
                            "dataset": {"type": "keyword"},
                            "action": {"type": "keyword"},
                            "outcome": {"type": "keyword"},
                            "severity": {"type": "keyword"},
                        }
                    },
                    "host": {
                        "properties": {
                            "name": {"type": "keyword"},
                            "ip": {"type": "ip"},
                        }
                    },
                    "user": {"properties": {"name": {"type": "keyword"}}},
                    "source": {
                        "properties": {
                            "ip": {"type": "ip"},
                            "port": {"type": "integer"},
                        }
                    },
                    "destination": {
                        "properties": {
                            "ip": {"type": "ip"},
                            "port": {"type": "integer"},
                        }
                    },
                    "process": {"properties": {"name": {"type": "keyword"}}},
                    "file": {"properties": {"name": {"type": "keyword"}}},
                    "dns": {
                        "properties": {
                            "question": {"properties": {"name": {"type": "keyword"}}},
                        }
                    },
                    "http": {
                        "properties": {
                            "request": {
                                "properties": {
                                    "method": {"type": "keyword"},
                                    "url": {"type": "keyword"},
                                }
                            },
                        }
                    },
                    "message": {"type": "text"},
                }
            },
        },
    }

    await es.indices.put_index_template(
        name=f"{settings.elasticsearch_index_prefix}-events",
        index_patterns=events_template["index_patterns"],
        template=events_template["template"],
    )
