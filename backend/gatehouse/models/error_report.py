"""
Gatehouse — ErrorReport SQLAlchemy Model
=========================================

What:  A write-once record of an exception the rescue handler observed.
Why:   The id is shown to the user ("Unexpected error, ID: 42") so support can
       find the backtrace without the user having to describe anything.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gatehouse.database import Base
from gatehouse.domain import utcnow


class ErrorReport(Base):
    __tablename__ = "error_reports"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="default")
    message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    exception_class: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    backtrace: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    request_context_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    account_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    http_method: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    format: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<ErrorReport(id={self.id}, category={self.category!r}, class={self.exception_class!r})>"
