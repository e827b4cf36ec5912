"""
Gatehouse — FastAPI Application Factory
========================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes middleware registration, service wiring, route mounting
       and lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
       Tests pass their own directory, authenticator and session factory.
Who:   Called by uvicorn to start the server (uvicorn gatehouse.main:app).

Application Architecture:
    ┌────────────────────────────────────────────────────────────┐
    │                      FastAPI App                           │
    │                                                            │
    │  Middleware Chain (outermost first):                       │
    │  ┌────────┐ ┌─────────┐ ┌──────┐ ┌─────────┐ ┌───────────┐ │
    │  │ Req ID │→│ Logging │→│ CORS │→│ Session │→│ Lifecycle │ │
    │  └────────┘ └─────────┘ └──────┘ └─────────┘ └───────────┘ │
    │                                                            │
    │  Routes:                                                   │
    │  ┌──────────┐ ┌───────┐ ┌────────────┐ ┌────────┐ ┌──────┐ │
    │  │ contexts │ │ feeds │ │ page_views │ │ logout │ │health│ │
    │  └──────────┘ └───────┘ └────────────┘ └────────┘ └──────┘ │
    │                                                            │
    │  Errors: no exception handlers; the lifecycle middleware   │
    │  rescues everything a route raises.                        │
    └────────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:   logging, configuration check
    Shutdown:  dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.middleware.sessions import SessionMiddleware

from gatehouse import __version__
from gatehouse.config import settings
from gatehouse.database import async_session_factory, dispose_engine
from gatehouse.dependencies import LifecycleServices
from gatehouse.middleware.lifecycle import LifecycleMiddleware
from gatehouse.middleware.logging import RequestLoggingMiddleware
from gatehouse.middleware.request_id import RequestIDMiddleware
from gatehouse.routes import contexts, feeds, health, page_views, sessions
from gatehouse.services.authenticator import Authenticator, SessionAuthenticator
from gatehouse.services.directory_base import ContextDirectory
from gatehouse.services.memory_directory import MemoryDirectory
from gatehouse.services.telemetry import PAGE_VIEW_HEADER

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure logging for the entire application.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Request ids are part of each message ("[abc12345] ...").
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging()
    logger.info("=" * 60)
    logger.info("Gatehouse %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("Gatehouse shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    directory: Optional[ContextDirectory] = None,
    authenticator: Optional[Authenticator] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        directory:       Source of contexts, memberships and rights
                         (default: an empty MemoryDirectory)
        authenticator:   Principal strategy (default: SessionAuthenticator)
        session_factory: Telemetry database sessions (default: the configured engine)

    Returns:
        Fully configured FastAPI instance ready to receive requests.
    """
    directory = directory or MemoryDirectory()
    app = FastAPI(
        title="Gatehouse",
        description=(
            "Multi-tenant request lifecycle: context resolution, token feeds, "
            "authorization, usage telemetry and error rescue."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )
    app.state.services = LifecycleServices(
        directory=directory,
        authenticator=authenticator or SessionAuthenticator(directory),
        session_factory=session_factory or async_session_factory,
    )

    # ── Register Middleware ───────────────────────────────────────────────
    # Middleware executes in REVERSE order of addition: the last added is
    # outermost. Lifecycle must sit inside Session so the session is loaded.

    app.add_middleware(LifecycleMiddleware)

    app.add_middleware(
        SessionMiddleware,
        secret_key=settings.session_secret,
        session_cookie=settings.session_cookie,
        max_age=settings.session_max_age,
        https_only=settings.is_production,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            PAGE_VIEW_HEADER,
            settings.csrf_header,
        ],
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.add_middleware(RequestIDMiddleware)

    # ── Register Routes ───────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(feeds.router)
    app.include_router(page_views.router)
    app.include_router(sessions.router)
    app.include_router(contexts.router)

    return app


app = create_app()
