"""
Gatehouse — Custom Exception Hierarchy
=======================================

What:  Application-specific exceptions for the faults that reach the rescue boundary.
Why:   Each class carries its own HTTP status and report category, so the
       ErrorRescueHandler can classify a fault without a lookup table.
How:   Each exception carries a message and optional context dict. The
       message may be shown to the caller; the context is logged only.
Who:   Raised by services and routes; caught by ErrorRescueHandler.
When:  Only for genuinely exceptional conditions. Expected outcomes
       (feed problems, authorization denials, quota overruns) are returned
       as result values and rendered where they are detected.

Exception Hierarchy:
    GatehouseError (base)             → 500 default
    ├── ContextNotFoundError          → 404 not_found
    │   └── ContextRequiredError      → 404 not_found
    ├── CsrfInvalidError              → 401 default (status label "AUT")
    └── InvalidAccessTokenError       → 401 invalid_access_token
"""

from typing import Any, Dict, Optional


class GatehouseError(Exception):
    """
    Base exception for all Gatehouse application errors.

    Attributes:
        message:      User-facing error description
        context:      Additional debug info (logged, never returned to the client)
        status_code:  HTTP status used by the rescue handler
        category:     Coarse machine-readable category stored on the error report
        status_label: Overrides the status shown to browser callers ("AUT")
    """

    status_code: int = 500
    category: str = "default"
    status_label: Optional[str] = None

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ContextNotFoundError(GatehouseError):
    """
    Raised when a context id was supplied but nothing matches it.

    HTTP: 404 Not Found
    """

    status_code = 404
    category = "not_found"

    def __init__(
        self,
        context_type: str = "Context",
        context_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"Cannot find {context_type}"
        if context_id:
            message = f"Cannot find {context_type} for ID: {context_id}"
        ctx = context or {}
        ctx["context_type"] = context_type
        if context_id:
            ctx["context_id"] = context_id
        super().__init__(message=message, context=ctx)


class ContextRequiredError(ContextNotFoundError):
    """Raised when a route is scoped to a context and none could be resolved."""

    def __init__(
        self,
        context_type: Optional[str] = None,
        context_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if context_id:
            super().__init__(context_type or "Context", context_id, context)
        else:
            GatehouseError.__init__(
                self, message="Context is required, but none found", context=context
            )


class CsrfInvalidError(GatehouseError):
    """
    Raised when a state-changing browser request carries a bad anti-forgery token.

    HTTP: 401, pinned apart from ordinary authorization denial by the "AUT" label.
    """

    status_code = 401
    status_label = "AUT"

    def __init__(
        self,
        message: str = "Invalid authenticity token",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class InvalidAccessTokenError(GatehouseError):
    """
    Raised when an API request presents a bearer token that resolves to nobody.

    HTTP: 401, with a WWW-Authenticate challenge on the response.
    """

    status_code = 401
    category = "invalid_access_token"

    def __init__(
        self,
        message: str = "Invalid access token",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
