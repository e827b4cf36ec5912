"""
Gatehouse — PageView SQLAlchemy Model
======================================

What:  One row per human page load, optionally amended once by the client's
       follow-up callback (interaction time, contribution flag).
Why:   Usage reports count page views; a view counted twice is a wrong report.
How:   The row id is generated when the view is created for a request and
       handed to the client in X-Page-View-Id; the follow-up callback sends
       it back as `page_view_id` and updates that same row.

Lifecycle:
    1. Generated in memory by TelemetryRecorder.set_page_view (pre-handler)
    2. Persisted by TelemetryRecorder.log_page_view (post-handler), once
    3. Optionally updated by a follow-up XHR carrying page_view_id
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, Float, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from gatehouse.database import Base
from gatehouse.domain import utcnow


class PageView(Base):
    __tablename__ = "page_views"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    request_id: Mapped[Optional[str]] = mapped_column(
        String(64), nullable=True, comment="Correlation id of the request that generated the view"
    )
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    real_user_id: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Masquerading user, when different from user_id"
    )
    developer_key_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    context_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    context_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    account_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    asset_user_access_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    http_method: Mapped[str] = mapped_column(String(10), nullable=False, default="GET")
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    user_request: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    participated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    generated_by_hand: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    contributed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    render_time: Mapped[Optional[float]] = mapped_column(Float, nullable=True, comment="Seconds")
    interaction_seconds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("idx_page_views_user_created_at", "user_id", "created_at"),
        Index("idx_page_views_context", "context_type", "context_id"),
    )

    def __repr__(self) -> str:
        return f"<PageView(id={self.id}, user_id={self.user_id}, url={self.url!r})>"
