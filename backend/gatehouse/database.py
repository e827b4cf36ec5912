"""
Gatehouse — Database Session Management
========================================

What:  Async SQLAlchemy engine, session factory and declarative base for the
       telemetry records Gatehouse owns (page views, asset accesses, error reports).
Why:   Centralizes all database connection logic in one place.
How:   An async engine with connection pooling, plus `build_session_factory`
       so tests and alternative deployments can point the app elsewhere.
When:  Engine is created at module import; sessions are opened per request
       by the TelemetryRecorder and ErrorRescueHandler, never by routes.

Connection Pooling Strategy:
    pool_size=20, max_overflow=10, pre-ping on, recycle hourly.
    SQLite URLs (tests, local runs) get no pool arguments; its pools reject them.
"""

from typing import Any, Dict

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from gatehouse.config import settings


def _engine_kwargs(url: str) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return kwargs


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, **_engine_kwargs(url))


def build_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: page views are read back after commit for headers
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


# ── Engine Configuration ──────────────────────────────────────────────────
engine = build_engine(settings.database_url)

# ── Session Factory ───────────────────────────────────────────────────────
async_session_factory = build_session_factory(engine)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Shares one metadata object, which Alembic reads for migrations and the
    test suite uses for `create_all`.
    """
    pass


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """Close every pooled connection; called from the lifespan shutdown."""
    await engine.dispose()
