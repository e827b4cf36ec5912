"""
Gatehouse — AssetUserAccess SQLAlchemy Model
=============================================

What:  Per-user, per-asset usage counter ("this student opened this file
       seven times and submitted once").
Why:   Feeds the per-student access reports of a course.
How:   Unique on (user_id, asset_code); looked up or created once per
       request by TelemetryStore, then bumped by `log()`.

Levels:
    view         → view_score + 1
    participate  → view_score + 1, participate_score + 1
    submit       → participate_score + 1, recorded as participate
    Once an access has reached `participate` it never drops back to `view`.
"""

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gatehouse.database import Base
from gatehouse.domain import utcnow

VIEW_LEVELS = ("view", "participate")
PARTICIPATE_LEVELS = ("participate", "submit")


class AssetUserAccess(Base):
    __tablename__ = "asset_user_accesses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    asset_code: Mapped[str] = mapped_column(String(255), nullable=False)
    asset_group_code: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    asset_category: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    membership_type: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    context_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    context_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    action_level: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    view_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    participate_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_access: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "asset_code", name="uq_asset_user_accesses_user_asset"),
    )

    def log(self, context: Any, accessed: Any) -> None:
        """
        Record one access event.

        Args:
            context:  The context the asset was reached through
            accessed: AccessedAsset with code, group, category, membership, level
        """
        level = accessed.level or "view"
        self.context_type = context.context_type
        self.context_id = context.id
        self.asset_group_code = accessed.group_code
        self.asset_category = accessed.category
        if accessed.membership_type:
            self.membership_type = accessed.membership_type
        self.last_access = utcnow()

        if level in VIEW_LEVELS:
            self.view_score = (self.view_score or 0.0) + 1
        if level in PARTICIPATE_LEVELS:
            self.participate_score = (self.participate_score or 0.0) + 1

        if self.action_level != "participate":
            self.action_level = "participate" if level in PARTICIPATE_LEVELS else "view"

    def __repr__(self) -> str:
        return f"<AssetUserAccess(user_id={self.user_id}, asset_code={self.asset_code!r}, level={self.action_level})>"
