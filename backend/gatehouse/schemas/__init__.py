"""
Gatehouse — API Schemas
========================

Pydantic response models for the JSON surface. Browser pages are rendered
from templates and do not go through these.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class CrumbSchema(BaseModel):
    name: str
    url: Optional[str] = None
    id: Optional[str] = None


class ContextResponse(BaseModel):
    """The resolved context of a request, as API clients see it."""

    context_type: str = Field(..., examples=["Course"])
    context_id: int = Field(..., examples=[5])
    asset_string: str = Field(..., examples=["course_5"])
    name: str
    short_name: str
    url: str = Field(..., examples=["/courses/5"])
    available: bool
    membership_type: Optional[str] = Field(default=None, examples=["Enrollment"])
    crumbs: List[CrumbSchema] = Field(default_factory=list)


class PertinentContextsResponse(BaseModel):
    contexts: List[str] = Field(..., examples=[["user_3", "course_5", "group_9"]])


class FeedResponse(BaseModel):
    context_type: str
    context_id: int
    name: str
    principal_id: Optional[int] = None
    generated_at: datetime


class FileAcceptedResponse(BaseModel):
    status: str = "accepted"
    context: str
    size: int


class SessionResetResponse(BaseModel):
    status: str = "logged_out"


class ErrorResponse(BaseModel):
    """Shape of rescued API errors."""

    status: str = Field(..., examples=["not_found"])
    error_report_id: Optional[int] = None
    message: str = Field(..., examples=["The specified resource does not exist."])


class UnauthorizedResponse(BaseModel):
    status: str = Field(default="unauthorized")
    message: str


class HealthResponse(BaseModel):
    status: str = Field(..., examples=["healthy"])
    version: str
    database: str = Field(..., examples=["connected"])
    uptime_seconds: float
