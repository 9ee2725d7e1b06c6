"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from hookrelay.core.config import settings
from hookrelay.core.exceptions import PersistenceError

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

# Stores receive a session factory, never a shared session: worker dispatches
# run concurrently and each needs its own transaction.
SessionFactory = async_sessionmaker[AsyncSession]

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp — all DateTime columns are stored as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@asynccontextmanager
async def store_errors(operation: str):
    """Translate driver/ORM failures into PersistenceError for the calling layer."""
    try:
        yield
    except (SQLAlchemyError, OSError) as e:
        raise PersistenceError(operation, str(e)) from e


@asynccontextmanager
async def get_task_session():
    """
    Create a fresh session factory for Celery tasks.

    Builds a new engine bound to the current event loop, avoiding the
    "attached to a different loop" error when module-level engines are reused
    across the short-lived loops created per Celery task.
    """
    task_engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10
    )
    task_session_maker = async_sessionmaker(
        bind=task_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )
    try:
        yield task_session_maker
    finally:
        await task_engine.dispose()
