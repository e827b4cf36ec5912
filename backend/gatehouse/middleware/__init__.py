# Middleware package init
"""
Gatehouse — Middleware Package
===============================

Middleware Chain (outermost first):
    Request → [Request ID] → [Logging] → [CORS] → [Session] → [Lifecycle] → Route Handler

    1. Request ID: correlation id for logs, page views and error reports
    2. Logging: method, path, status, duration, user and context
    3. CORS: preflight handling and exposed headers
    4. Session: signed cookie session (itsdangerous) read by the lifecycle
    5. Lifecycle: CSRF, authentication, telemetry, rescue boundary

    The CSRF guard lives here too; it is a pipeline stage, not a middleware
    of its own, so a CSRF failure goes through the same rescue boundary.
"""
