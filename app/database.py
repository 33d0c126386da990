"""
Roommate Match — SQL backend for the document store.

Holds the declarative ``Base`` for the ``documents`` table and builds the
async engine on first use, so ``STORE_BACKEND=memory`` deployments and
the test-suite never open a connection pool.  The engine connects through
``cloud-sql-python-connector`` when a Cloud SQL instance is configured,
otherwise from ``DATABASE_URL``.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import Settings, get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base; the only mapped table is ``documents``."""


def _pool_kwargs(settings: Settings) -> dict:
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": 30,
        "pool_recycle": 1800,
        "pool_pre_ping": True,
    }


def _cloud_sql_engine(settings: Settings) -> AsyncEngine:
    from google.cloud.sql.connector import Connector

    connector = Connector()

    async def _get_connection():
        return await connector.connect_async(
            settings.CLOUD_SQL_INSTANCE_CONNECTION,
            "asyncpg",
            user=settings.DB_USER,
            password=settings.DB_PASSWORD,
            db=settings.DB_NAME,
            enable_iam_auth=True,
        )

    logger.info(
        "Document store engine via Cloud SQL Connector (%s)",
        settings.CLOUD_SQL_INSTANCE_CONNECTION,
    )
    return create_async_engine(
        "postgresql+asyncpg://",
        async_creator=_get_connection,
        echo=(settings.LOG_LEVEL == "DEBUG"),
        **_pool_kwargs(settings),
    )


def _url_engine(settings: Settings) -> AsyncEngine:
    url = settings.DATABASE_URL
    # Accept a plain ``postgresql://`` scheme as well.
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    logger.info("Document store engine from DATABASE_URL")
    return create_async_engine(
        url,
        echo=(settings.LOG_LEVEL == "DEBUG"),
        **_pool_kwargs(settings),
    )


@lru_cache
def get_engine() -> AsyncEngine:
    settings = get_settings()
    if settings.CLOUD_SQL_USE_UNIX_SOCKET and settings.CLOUD_SQL_INSTANCE_CONNECTION:
        return _cloud_sql_engine(settings)
    return _url_engine(settings)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory handed to ``SqlDocumentStore``."""
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def dispose_engine() -> None:
    """Close the pool if it was ever opened."""
    if get_engine.cache_info().currsize == 0:
        return
    await get_engine().dispose()
    get_session_factory.cache_clear()
    get_engine.cache_clear()
