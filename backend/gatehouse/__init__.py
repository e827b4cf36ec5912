"""
Gatehouse — Application Package Initializer
============================================

What: Marks the `gatehouse` directory as a Python package.
Why:  Enables module imports like `from gatehouse.config import settings`.
Who:  Used implicitly by Python's import system and explicitly by Alembic, pytest, and uvicorn.

Architecture Note:
    Gatehouse is the request-lifecycle layer that runs in front of every
    route of a multi-tenant learning platform:

    ┌─────────────────────────────────────┐
    │     Middleware (Lifecycle, CSRF)    │  ← one RequestState per request
    ├─────────────────────────────────────┤
    │      Routes (thin HTTP handlers)    │  ← resolve context, authorize
    ├─────────────────────────────────────┤
    │   Services (resolvers, gate,        │  ← the decision logic
    │   telemetry, error rescue)          │
    ├─────────────────────────────────────┤
    │  Directory (domain lookups) and     │  ← external collaborators
    │  Telemetry store (SQLAlchemy)       │
    └─────────────────────────────────────┘

    The domain entities themselves (courses, accounts, enrollments) live
    behind the ContextDirectory interface; Gatehouse never owns them.
"""

__version__ = "1.0.0"
